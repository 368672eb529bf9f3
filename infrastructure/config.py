"""
SWARMGRAPH CONFIG - TOML Configuration

Configuration is read once at startup from config/swarmgraph.toml and
decoded into typed, validated msgspec structs. Components receive the
section they need; nothing reads the file after startup.

File Layout:
    [server]      host, port
    [engine]      queue_size, expiry_interval, collaboration_ttl
    [eviction]    max_nodes, max_edges, max_age, interval, pinned_types, enabled
    [broadcast]   channel_size, metrics_interval, heartbeat_interval
    [logging]     level, mutation_buffer

Every key is optional; missing keys take the defaults below.

Usage:
    from infrastructure.config import load_config, configure_logging

    config = load_config()                       # config/swarmgraph.toml
    config = load_config("deploy/prod.toml")     # explicit path
    configure_logging(config.logging.level)
"""
import logging
import os
import tomllib
from pathlib import Path
from typing import Annotated, Any, Dict, Optional, Union

import msgspec

from core.eviction import EvictionConfig


logger = logging.getLogger("swarmgraph.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "swarmgraph.toml"
CONFIG_ENV_VAR = "SWARMGRAPH_CONFIG"


class ConfigError(Exception):
    """Raised when a config file cannot be read or holds invalid values."""
    pass


# =============================================================================
# SECTIONS
# =============================================================================

class ServerConfig(msgspec.Struct, kw_only=True, frozen=True):
    """HTTP/WebSocket listener."""
    host: str = "127.0.0.1"
    port: Annotated[int, msgspec.Meta(ge=1, le=65535)] = 8080


class EngineConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Single-writer engine."""
    queue_size: Annotated[int, msgspec.Meta(gt=0)] = 10000            # Pending command bound
    expiry_interval: Annotated[float, msgspec.Meta(gt=0)] = 1.0       # Seconds between expiry scans
    collaboration_ttl: Optional[Annotated[float, msgspec.Meta(gt=0)]] = None  # COLLABORATES lifetime


class BroadcastConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Subscriber fan-out."""
    channel_size: Annotated[int, msgspec.Meta(gt=0)] = 256            # Per-subscriber backlog
    metrics_interval: Annotated[float, msgspec.Meta(ge=0)] = 5.0      # 0 disables metrics push
    heartbeat_interval: Annotated[float, msgspec.Meta(gt=0)] = 30.0   # WebSocket idle ping


class LoggingConfig(msgspec.Struct, kw_only=True, frozen=True):
    level: str = "INFO"
    mutation_buffer: Annotated[int, msgspec.Meta(gt=0)] = 1000        # Recent deltas kept


class SwarmGraphConfig(msgspec.Struct, kw_only=True, frozen=True):
    """Complete configuration."""
    server: ServerConfig = msgspec.field(default_factory=ServerConfig)
    engine: EngineConfig = msgspec.field(default_factory=EngineConfig)
    eviction: EvictionConfig = msgspec.field(default_factory=EvictionConfig)
    broadcast: BroadcastConfig = msgspec.field(default_factory=BroadcastConfig)
    logging: LoggingConfig = msgspec.field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return msgspec.to_builtins(self)


# =============================================================================
# LOADING
# =============================================================================

def parse_config(raw: Dict[str, Any]) -> SwarmGraphConfig:
    """
    Validate a decoded TOML document.

    Raises:
        ConfigError: On unknown types or out-of-range values
    """
    try:
        return msgspec.convert(raw, type=SwarmGraphConfig)
    except msgspec.ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def resolve_config_path(path: Optional[Union[str, Path]] = None) -> Path:
    """Explicit path, else $SWARMGRAPH_CONFIG, else config/swarmgraph.toml."""
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_config(path: Optional[Union[str, Path]] = None) -> SwarmGraphConfig:
    """
    Load configuration from TOML.

    A missing file is not an error: the defaults apply and a warning is
    logged. A file that exists but cannot be parsed or validated is.

    Args:
        path: Config file; see resolve_config_path for the fallbacks

    Returns:
        Validated SwarmGraphConfig

    Raises:
        ConfigError: If the file is unreadable, not TOML, or invalid
    """
    config_path = resolve_config_path(path)

    if not config_path.exists():
        logger.warning(f"Config file {config_path} not found; using defaults")
        return SwarmGraphConfig()

    try:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{config_path} is not valid TOML: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}") from e

    config = parse_config(raw)
    logger.debug(f"Loaded configuration from {config_path}")
    return config


def configure_logging(level: str = "INFO") -> None:
    """
    Configure the root logger once for the process.

    Raises:
        ConfigError: If `level` is not a logging level name
    """
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ConfigError(f"Unknown log level: {level}")

    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    logging.getLogger("swarmgraph").setLevel(numeric)
