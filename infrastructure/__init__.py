"""
SwarmGraph Infrastructure Layer

Configuration, subscriber fan-out and the recent-mutation log.
"""

from infrastructure.broadcast import BroadcastHub, Subscriber
from infrastructure.config import (
    ConfigError,
    SwarmGraphConfig,
    configure_logging,
    load_config,
)
from infrastructure.logger import MutationEvent, MutationLogger

__all__ = [
    "BroadcastHub",
    "Subscriber",
    "ConfigError",
    "SwarmGraphConfig",
    "configure_logging",
    "load_config",
    "MutationEvent",
    "MutationLogger",
]
