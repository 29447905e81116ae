"""Fair rotation over channel members backed by a whole-document state store."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from .connectors import StateStore, WriteConflict
from .models import ChannelId, ChannelState, PickemState, UserId
from .utils import utc_now

logger = logging.getLogger("pickem.repository")

T = TypeVar("T")

DEFAULT_CONFLICT_RETRIES = 3


class InvalidSampleSize(ValueError):
    """Raised when a sample size is not a whole number of at least 1."""


@dataclass(frozen=True)
class PickOutcome:
    """Result of a pick: the chosen user (or ``None``) and the cohort drawn from."""

    user_id: Optional[UserId]
    cohort: Tuple[UserId, ...] = ()

    @property
    def picked(self) -> bool:
        return self.user_id is not None


def validate_sample_size(sample_size: object) -> int:
    if isinstance(sample_size, bool) or not isinstance(sample_size, int):
        raise InvalidSampleSize(f"Sample size must be an integer, got {sample_size!r}")
    if sample_size < 1:
        raise InvalidSampleSize(f"Sample size must be at least 1, got {sample_size}")
    return sample_size


def eligible_cohort(channel: ChannelState, members: Sequence[UserId]) -> List[UserId]:
    """Return the ``sample_size`` most overdue, non-excluded members.

    Members keep their given order when their last pick times are equal.
    """
    seen = set()
    candidates = []
    for user_id in members:
        if user_id in seen or channel.is_excluded(user_id):
            continue
        seen.add(user_id)
        candidates.append(channel.get_user(user_id))
    candidates.sort(key=lambda entry: entry.last_picked_at)
    return [entry.user_id for entry in candidates[: channel.get_sample_size()]]


class PickemRepository:
    """Load, compute, and save cycles for every channel operation.

    Operations against the same store location are serialized inside this
    process. If the store reports that another writer changed the document in
    between, the whole cycle is repeated from a fresh load.
    """

    def __init__(
        self,
        *,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_conflict_retries: int = DEFAULT_CONFLICT_RETRIES,
    ):
        self.rng = rng or random.Random()
        self.clock = clock or utc_now
        self.max_conflict_retries = max(0, max_conflict_retries)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, store: StateStore) -> asyncio.Lock:
        key = store.location or repr(store)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _read(self, store: StateStore, channel_id: ChannelId) -> ChannelState:
        state = await store.load(PickemState())
        return state.get_channel(channel_id)

    async def _mutate(
        self,
        store: StateStore,
        channel_id: ChannelId,
        operation: Callable[[ChannelState], Tuple[T, bool]],
    ) -> T:
        """Run ``operation`` on a freshly loaded channel and save if it asks to."""
        async with self._lock_for(store):
            attempt = 0
            while True:
                state = await store.load(PickemState())
                result, changed = operation(state.get_channel(channel_id))
                if not changed:
                    return result
                try:
                    await store.save(state)
                    return result
                except WriteConflict as exc:
                    if attempt >= self.max_conflict_retries:
                        logger.error(
                            "Giving up on channel %s after %s conflicting writes: %s",
                            channel_id,
                            attempt + 1,
                            exc,
                        )
                        raise
                    attempt += 1
                    logger.warning(
                        "Concurrent update of %s while changing channel %s; retrying (%s/%s).",
                        store.location,
                        channel_id,
                        attempt,
                        self.max_conflict_retries,
                    )

    async def pick(
        self,
        store: StateStore,
        channel_id: ChannelId,
        members: Sequence[UserId],
    ) -> PickOutcome:
        def choose(channel: ChannelState) -> Tuple[PickOutcome, bool]:
            cohort = eligible_cohort(channel, members)
            if not cohort:
                return PickOutcome(user_id=None), False
            selected = self.rng.choice(cohort)
            channel.set_user_picked(selected, self.clock())
            return PickOutcome(user_id=selected, cohort=tuple(cohort)), True

        outcome = await self._mutate(store, channel_id, choose)
        if outcome.picked:
            logger.info(
                "Picked %s in channel %s from cohort of %s",
                outcome.user_id,
                channel_id,
                len(outcome.cohort),
            )
        else:
            logger.info("No eligible members to pick in channel %s", channel_id)
        return outcome

    async def exclude(self, store: StateStore, channel_id: ChannelId, user_id: UserId) -> None:
        def apply(channel: ChannelState) -> Tuple[None, bool]:
            channel.exclude_user(user_id)
            return None, True

        await self._mutate(store, channel_id, apply)
        logger.info("Excluded %s in channel %s", user_id, channel_id)

    async def include(self, store: StateStore, channel_id: ChannelId, user_id: UserId) -> None:
        def apply(channel: ChannelState) -> Tuple[None, bool]:
            channel.include_user(user_id)
            return None, True

        await self._mutate(store, channel_id, apply)
        logger.info("Included %s in channel %s", user_id, channel_id)

    async def excluded(self, store: StateStore, channel_id: ChannelId) -> List[UserId]:
        channel = await self._read(store, channel_id)
        return channel.excluded_users()

    async def sample_size(self, store: StateStore, channel_id: ChannelId) -> int:
        channel = await self._read(store, channel_id)
        return channel.get_sample_size()

    async def set_sample_size(self, store: StateStore, channel_id: ChannelId, sample_size: int) -> None:
        value = validate_sample_size(sample_size)

        def apply(channel: ChannelState) -> Tuple[None, bool]:
            channel.set_sample_size(value)
            return None, True

        await self._mutate(store, channel_id, apply)
        logger.info("Set sample size to %s in channel %s", value, channel_id)


__all__ = [
    "DEFAULT_CONFLICT_RETRIES",
    "InvalidSampleSize",
    "PickOutcome",
    "PickemRepository",
    "eligible_cohort",
    "validate_sample_size",
]
