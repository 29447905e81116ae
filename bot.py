import logging
import random

import discord
from discord.ext import commands
from dotenv import load_dotenv

from pickem.cog import add_pickem_cog
from pickem.config import PickemConfig, load_config
from pickem.connectors import StateStore, store_from_url
from pickem.repository import PickemRepository

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("pickem")


class PickemBot(commands.Bot):
    def __init__(self, config: PickemConfig, *, store: StateStore, repository: PickemRepository):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        super().__init__(command_prefix=config.command_prefix, intents=intents)
        self.config = config
        self.store = store
        self.repository = repository

    async def setup_hook(self) -> None:
        await add_pickem_cog(self, store=self.store, repository=self.repository)

    async def on_ready(self) -> None:
        logger.info("Logged in as %s (%s)", self.user, getattr(self.user, "id", None))


def build_bot(config: PickemConfig) -> PickemBot:
    store = store_from_url(config.state_url)
    repository = PickemRepository(
        rng=random.SystemRandom(),
        max_conflict_retries=config.conflict_retries,
    )
    return PickemBot(config, store=store, repository=repository)


def main():
    config = load_config()
    logging.getLogger().setLevel(config.log_level)
    bot = build_bot(config)
    bot.run(config.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
