"""Chat command handling shared by every front end.

A command is ``<name> [argument]``. Handlers return the private reply for the
caller (or ``None``) and publish channel-wide announcements through the
request's ``announce`` callback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from .connectors import StateStore, StoreError
from .repository import InvalidSampleSize, PickemRepository
from .utils import extract_user_id, format_mention

logger = logging.getLogger("pickem.commands")

HELP_TEXT = (
    "**pick** to pick a user from the current channel\n"
    "**exclude** to see the users who will not be picked\n"
    "**exclude @username** to exclude a user from being picked\n"
    "**include @username** to include an excluded user\n"
    "**sample_size** to see how many overdue users a pick chooses from\n"
    "**sample_size number** to change that number\n"
    "**help** to see this message\n"
)
NO_CANDIDATES_TEXT = "No users to pick.  Are they all excluded?"
ERROR_TEXT = "Error"


@dataclass
class CommandRequest:
    user_name: str
    channel_id: str
    text: str
    store: StateStore
    list_members: Callable[[], Awaitable[Sequence[str]]]
    announce: Callable[[str], Awaitable[None]]


def parse_command(text: str) -> Tuple[str, List[str]]:
    """Split command text into a lower-cased name and at most one argument."""
    tokens = (text or "").split()
    if not tokens:
        return "", []
    return tokens[0].lower(), tokens[1:2]


class PickemCommands:
    def __init__(self, repository: PickemRepository):
        self.repository = repository

    async def handle(self, request: CommandRequest) -> Optional[str]:
        name, args = parse_command(request.text)
        handler = {
            "pick": self.pick,
            "exclude": self.exclude,
            "include": self.include,
            "sample_size": self.sample_size,
        }.get(name)
        if handler is None:
            return HELP_TEXT
        try:
            return await handler(request, args)
        except StoreError:
            logger.exception("Error in %s for channel %s", name, request.channel_id)
            return ERROR_TEXT

    async def pick(self, request: CommandRequest, args: Sequence[str]) -> Optional[str]:
        members = await request.list_members()
        outcome = await self.repository.pick(request.store, request.channel_id, members)
        if not outcome.picked:
            return NO_CANDIDATES_TEXT
        await request.announce(f"{request.user_name} picked {format_mention(outcome.user_id)}")
        return None

    async def exclude(self, request: CommandRequest, args: Sequence[str]) -> Optional[str]:
        if not args:
            user_ids = await self.repository.excluded(request.store, request.channel_id)
            if not user_ids:
                return "No excluded users"
            return "Excluded users: " + ", ".join(format_mention(uid) for uid in user_ids)
        user_id = extract_user_id(args[0])
        if user_id is None:
            return f"Unknown user: {args[0]}"
        await self.repository.exclude(request.store, request.channel_id, user_id)
        await request.announce(f"{request.user_name} excluded {format_mention(user_id)}")
        return None

    async def include(self, request: CommandRequest, args: Sequence[str]) -> Optional[str]:
        if not args:
            return "Try include @username"
        user_id = extract_user_id(args[0])
        if user_id is None:
            return f"Unknown user: {args[0]}"
        await self.repository.include(request.store, request.channel_id, user_id)
        await request.announce(f"{request.user_name} included {format_mention(user_id)}")
        return None

    async def sample_size(self, request: CommandRequest, args: Sequence[str]) -> Optional[str]:
        if not args:
            value = await self.repository.sample_size(request.store, request.channel_id)
            return f"sample_size is: {value}"
        try:
            value = int(args[0], 10)
            await self.repository.set_sample_size(request.store, request.channel_id, value)
        except (ValueError, InvalidSampleSize):
            return "sample_size must be a whole number of at least 1"
        await request.announce(f"{request.user_name} set sample_size to {value}")
        return None


__all__ = [
    "CommandRequest",
    "ERROR_TEXT",
    "HELP_TEXT",
    "NO_CANDIDATES_TEXT",
    "PickemCommands",
    "parse_command",
]
