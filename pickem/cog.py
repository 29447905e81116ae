"""discord.py bindings for the Pickem commands."""

from __future__ import annotations

import logging
from typing import List, Optional

import discord
from discord.ext import commands

from .commands import CommandRequest, PickemCommands
from .connectors import StateStore
from .repository import PickemRepository

logger = logging.getLogger("pickem.cog")


def member_profile_name(member: discord.abc.User) -> str:
    """Return the user's profile name, ignoring any server nickname."""
    global_name = getattr(member, "global_name", None)
    if isinstance(global_name, str) and global_name.strip():
        return global_name.strip()
    return member.name


def channel_member_ids(channel: Optional[discord.abc.GuildChannel]) -> List[str]:
    members = getattr(channel, "members", None) or []
    return [str(member.id) for member in members if not getattr(member, "bot", False)]


class PickemCog(commands.Cog):
    """Exposes ``!pickem <command>`` in every text channel the bot can see."""

    def __init__(self, bot: commands.Bot, *, store: StateStore, repository: PickemRepository):
        self.bot = bot
        self.store = store
        self.handler = PickemCommands(repository)
        self.allowed_mentions = discord.AllowedMentions(users=True, roles=False, everyone=False)

    def build_request(self, ctx: commands.Context, text: str) -> CommandRequest:
        channel = ctx.channel

        async def list_members() -> List[str]:
            return channel_member_ids(channel)

        async def announce(message: str) -> None:
            try:
                await channel.send(message, allowed_mentions=self.allowed_mentions)
            except discord.HTTPException as exc:
                logger.warning("Failed to announce in channel %s: %s", channel.id, exc)

        return CommandRequest(
            user_name=member_profile_name(ctx.author),
            channel_id=str(channel.id),
            text=text,
            store=self.store,
            list_members=list_members,
            announce=announce,
        )

    @commands.command(name="pickem")
    async def pickem_command(self, ctx: commands.Context, *, text: str = ""):
        if ctx.guild is None:
            await ctx.reply("Run this command inside a server channel.", mention_author=False)
            return
        logger.debug(
            "pickem invoked by %s (%s) in %s: %s",
            ctx.author,
            ctx.author.id,
            ctx.channel.id,
            text,
        )
        request = self.build_request(ctx, text)
        reply = await self.handler.handle(request)
        if reply:
            await ctx.reply(reply, mention_author=False, allowed_mentions=discord.AllowedMentions.none())


async def add_pickem_cog(bot: commands.Bot, *, store: StateStore, repository: PickemRepository) -> PickemCog:
    cog = PickemCog(bot, store=store, repository=repository)
    await bot.add_cog(cog)
    logger.info("Pickem commands enabled with state at %s", store.location)
    return cog


__all__ = ["PickemCog", "add_pickem_cog", "channel_member_ids", "member_profile_name"]
