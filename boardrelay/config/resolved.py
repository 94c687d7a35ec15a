"""
Resolved configuration variants.

``ConfigResolver.resolve_config`` returns exactly one of these, tagged with the
precedence tier that produced it. Callers match on the type (or on
``provenance``) instead of checking flags.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class Provenance(str, Enum):
    """Which precedence tier produced a resolved config."""

    EXPLICIT = "explicit"
    GUILD_DEFAULT = "guildDefault"
    ENVIRONMENT_DEFAULT = "environmentDefault"


@dataclass(frozen=True, slots=True)
class ExplicitConfig:
    """Resolved from a channel mapping."""

    guild_id: str
    channel_id: str
    board_id: str
    list_id: str

    @property
    def provenance(self) -> Provenance:
        return Provenance.EXPLICIT


@dataclass(frozen=True, slots=True)
class GuildDefaultConfig:
    """Resolved from the guild's default config."""

    guild_id: str
    board_id: str
    list_id: str

    @property
    def provenance(self) -> Provenance:
        return Provenance.GUILD_DEFAULT


@dataclass(frozen=True, slots=True)
class EnvironmentDefaultConfig:
    """Resolved from the process-level fallback."""

    board_id: str
    list_id: str
    degraded: bool = False  # True when reached because the store was unavailable

    @property
    def provenance(self) -> Provenance:
        return Provenance.ENVIRONMENT_DEFAULT


ResolvedConfig = Union[ExplicitConfig, GuildDefaultConfig, EnvironmentDefaultConfig]


def config_to_dict(config: ResolvedConfig) -> dict[str, Any]:
    """Serialize a resolved config for API responses."""
    data: dict[str, Any] = {
        "board_id": config.board_id,
        "list_id": config.list_id,
        "provenance": config.provenance.value,
    }
    if isinstance(config, ExplicitConfig):
        data["guild_id"] = config.guild_id
        data["channel_id"] = config.channel_id
    elif isinstance(config, GuildDefaultConfig):
        data["guild_id"] = config.guild_id
    else:
        data["degraded"] = config.degraded
    return data
