"""Environment-derived configuration for the Pickem bot."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .repository import DEFAULT_CONFLICT_RETRIES
from .utils import int_from_env, str_from_env

logger = logging.getLogger("pickem.config")

REQUIRED_VARIABLES = ("PICKEM_STATE_URL", "DISCORD_TOKEN")


class ConfigError(RuntimeError):
    """Raised when required settings are missing."""


@dataclass(frozen=True)
class PickemConfig:
    state_url: str
    discord_token: str
    command_prefix: str = "!"
    log_level: str = "INFO"
    conflict_retries: int = DEFAULT_CONFLICT_RETRIES


def load_config() -> PickemConfig:
    missing = [name for name in REQUIRED_VARIABLES if not os.getenv(name, "").strip()]
    if missing:
        raise ConfigError(
            f"Missing {', '.join(missing)}. Set it in your environment or .env file."
        )
    retries = int_from_env("PICKEM_CONFLICT_RETRIES", DEFAULT_CONFLICT_RETRIES)
    if retries < 0:
        logger.warning(
            "PICKEM_CONFLICT_RETRIES must not be negative. Falling back to %s.",
            DEFAULT_CONFLICT_RETRIES,
        )
        retries = DEFAULT_CONFLICT_RETRIES
    log_level = str_from_env("PICKEM_LOG_LEVEL", "INFO").upper()
    if not isinstance(logging.getLevelName(log_level), int):
        logger.warning("Unknown PICKEM_LOG_LEVEL %r. Falling back to INFO.", log_level)
        log_level = "INFO"
    return PickemConfig(
        state_url=os.environ["PICKEM_STATE_URL"].strip(),
        discord_token=os.environ["DISCORD_TOKEN"].strip(),
        command_prefix=str_from_env("PICKEM_PREFIX", "!"),
        log_level=log_level,
        conflict_retries=retries,
    )


__all__ = ["ConfigError", "PickemConfig", "REQUIRED_VARIABLES", "load_config"]
