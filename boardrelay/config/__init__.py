"""
BoardRelay Configuration

Settings, stored record models and resolved config variants.
"""

from .resolved import (
    EnvironmentDefaultConfig,
    ExplicitConfig,
    GuildDefaultConfig,
    Provenance,
    ResolvedConfig,
    config_to_dict,
)
from .schemas import (
    AppSettings,
    AuditEvent,
    ChannelMapping,
    DefaultConfig,
    EnvironmentDefault,
    MetricRecord,
    Severity,
    WebhookRegistration,
)

__all__ = [
    "AppSettings",
    "AuditEvent",
    "ChannelMapping",
    "DefaultConfig",
    "EnvironmentDefault",
    "EnvironmentDefaultConfig",
    "ExplicitConfig",
    "GuildDefaultConfig",
    "MetricRecord",
    "Provenance",
    "ResolvedConfig",
    "Severity",
    "WebhookRegistration",
    "config_to_dict",
]
