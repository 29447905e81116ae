"""Pickem package providing fair per-channel member rotation for chat bots."""

from . import cog, commands, config, connectors, models, repository, utils  # noqa: F401

__all__ = ["cog", "commands", "config", "connectors", "models", "repository", "utils"]
