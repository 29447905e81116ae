"""Dataclasses and (de)serialization for per-channel pick history."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Mapping, Optional, Set

from .utils import utc_now

logger = logging.getLogger("pickem.models")

UserId = str
ChannelId = str

NEVER_PICKED = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MIN_STEP = timedelta(microseconds=1)


class MalformedState(ValueError):
    """Raised when a persisted document does not match the expected schema."""


@dataclass
class PickedUserState:
    user_id: UserId
    last_picked_at: datetime


@dataclass
class ChannelState:
    channel_id: ChannelId
    sample_size: int = 1
    excluded: Set[UserId] = field(default_factory=set)
    picked_users: Dict[UserId, PickedUserState] = field(default_factory=dict)

    def exclude_user(self, user_id: UserId) -> None:
        self.excluded.add(user_id)

    def include_user(self, user_id: UserId) -> None:
        self.excluded.discard(user_id)

    def is_excluded(self, user_id: UserId) -> bool:
        return user_id in self.excluded

    def excluded_users(self) -> List[UserId]:
        return sorted(self.excluded)

    def get_sample_size(self) -> int:
        return self.sample_size

    def set_sample_size(self, sample_size: int) -> None:
        # Range checks happen in the repository before anything is loaded.
        self.sample_size = sample_size

    def get_user(self, user_id: UserId) -> PickedUserState:
        """Return the recorded history for ``user_id`` or a never-picked placeholder."""
        existing = self.picked_users.get(user_id)
        if existing is not None:
            return existing
        return PickedUserState(user_id=user_id, last_picked_at=NEVER_PICKED)

    def set_user_picked(self, user_id: UserId, now: Optional[datetime] = None) -> PickedUserState:
        """Record a pick for ``user_id``; the stored timestamp only ever moves forward."""
        when = now or utc_now()
        existing = self.picked_users.get(user_id)
        if existing is None:
            entry = PickedUserState(user_id=user_id, last_picked_at=when)
            self.picked_users[user_id] = entry
            return entry
        if when <= existing.last_picked_at:
            when = existing.last_picked_at + _MIN_STEP
        existing.last_picked_at = when
        return existing


@dataclass
class PickemState:
    channels: Dict[ChannelId, ChannelState] = field(default_factory=dict)
    # Opaque store token captured on load; never serialized.
    revision: Optional[str] = field(default=None, compare=False)

    def get_channel(self, channel_id: ChannelId) -> ChannelState:
        channel = self.channels.get(channel_id)
        if channel is None:
            channel = ChannelState(channel_id=channel_id)
            self.channels[channel_id] = channel
        return channel

    def set_channel(self, channel_id: ChannelId, channel: ChannelState) -> None:
        self.channels[channel_id] = channel


def parse_timestamp(raw: object) -> datetime:
    if not isinstance(raw, str) or not raw.strip():
        raise MalformedState(f"Invalid timestamp: {raw!r}")
    value = raw.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise MalformedState(f"Invalid timestamp: {raw!r}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def encode_picked_user(entry: PickedUserState) -> Dict[str, object]:
    return {
        "userId": entry.user_id,
        "lastPickedAt": entry.last_picked_at.isoformat(),
    }


def decode_picked_user(key: str, payload: object) -> PickedUserState:
    if not isinstance(payload, Mapping):
        raise MalformedState(f"Pick history for {key!r} must be an object")
    user_id = payload.get("userId", key)
    if not isinstance(user_id, str) or not user_id:
        raise MalformedState(f"Invalid userId for pick history {key!r}")
    if user_id != key:
        raise MalformedState(f"Pick history keyed {key!r} belongs to userId {user_id!r}")
    if "lastPickedAt" not in payload:
        raise MalformedState(f"Pick history for {key!r} is missing lastPickedAt")
    return PickedUserState(user_id=user_id, last_picked_at=parse_timestamp(payload["lastPickedAt"]))


def encode_channel(channel: ChannelState) -> Dict[str, object]:
    return {
        "channelId": channel.channel_id,
        "sampleSize": channel.sample_size,
        "excludedUsers": channel.excluded_users(),
        "pickedUsers": {
            user_id: encode_picked_user(entry)
            for user_id, entry in channel.picked_users.items()
        },
    }


def decode_channel(payload: object) -> ChannelState:
    if not isinstance(payload, Mapping):
        raise MalformedState("Channel record must be an object")
    channel_id = payload.get("channelId")
    if not isinstance(channel_id, str) or not channel_id:
        raise MalformedState("Channel record is missing channelId")

    sample_size = payload.get("sampleSize", 1)
    if isinstance(sample_size, bool) or not isinstance(sample_size, int):
        raise MalformedState(f"Invalid sampleSize for channel {channel_id}: {sample_size!r}")
    if sample_size < 1:
        logger.warning(
            "Channel %s stored sampleSize=%s; clamping to 1.",
            channel_id,
            sample_size,
        )
        sample_size = 1

    raw_excluded = payload.get("excludedUsers", [])
    if not isinstance(raw_excluded, list) or not all(isinstance(u, str) for u in raw_excluded):
        raise MalformedState(f"Invalid excludedUsers for channel {channel_id}")

    raw_picked = payload.get("pickedUsers", {})
    if not isinstance(raw_picked, Mapping):
        raise MalformedState(f"Invalid pickedUsers for channel {channel_id}")
    picked_users: Dict[UserId, PickedUserState] = {}
    for raw_key, entry in raw_picked.items():
        key = str(raw_key)
        decoded = decode_picked_user(key, entry)
        picked_users[key] = decoded

    return ChannelState(
        channel_id=channel_id,
        sample_size=sample_size,
        excluded=set(raw_excluded),
        picked_users=picked_users,
    )


def encode_state(state: PickemState) -> List[Dict[str, object]]:
    return [encode_channel(channel) for channel in state.channels.values()]


def decode_state(payload: object, state: Optional[PickemState] = None) -> PickemState:
    """Populate ``state`` (or a fresh one) from a decoded JSON document.

    The canonical document is a list of channel records; a mapping of
    channel id to record is accepted as well.
    """
    target = state if state is not None else PickemState()
    if isinstance(payload, Mapping):
        records = list(payload.values())
    elif isinstance(payload, list):
        records = payload
    else:
        raise MalformedState(f"Expected a list of channel records, got {type(payload).__name__}")
    for record in records:
        channel = decode_channel(record)
        target.set_channel(channel.channel_id, channel)
    return target


__all__ = [
    "NEVER_PICKED",
    "ChannelId",
    "ChannelState",
    "MalformedState",
    "PickedUserState",
    "PickemState",
    "UserId",
    "decode_channel",
    "decode_picked_user",
    "decode_state",
    "encode_channel",
    "encode_picked_user",
    "encode_state",
    "parse_timestamp",
]
