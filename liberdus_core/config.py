"""
TOML-based configuration for the Liberdus client.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from liberdus_core.config import load_config
    cfg = load_config("liberdus.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from liberdus_core.logging_config import parse_areas

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]


@dataclass
class NetworkConfig:
    """Which ledger network to talk to and through which gateways."""
    netid: str = "2f4b9f72089bbfce9f89d3d8e76086daab6ae6f416887c809aab26abb6e5703b"
    name: str = "Testnet"
    gateways: list[str] = field(
        default_factory=lambda: ["https://test.liberdus.com:3030"]
    )


@dataclass
class SyncConfig:
    """Chat polling cadence and network bounds."""
    poll_interval_seconds: float = 10.0
    # Polls requested sooner than this after the previous one are dropped
    # unless forced.
    min_poll_gap_seconds: float = 1.0
    # Faster cadence while a conversation view is open.
    view_poll_interval_seconds: float = 2.0
    request_timeout_seconds: float = 10.0
    default_toll: int = 1
    transfer_fee: int = 1


@dataclass
class StorageConfig:
    """Persistence settings."""
    path: str = "data/liberdus.db"


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None
    areas: dict[str, str] = field(default_factory=dict)   # area -> level


@dataclass
class LiberdusConfig:
    """Top-level configuration container."""
    network: NetworkConfig = field(default_factory=NetworkConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> LiberdusConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        LIBERDUS_NETID          -> network.netid
        LIBERDUS_GATEWAYS       -> network.gateways  (comma-separated URLs)
        LIBERDUS_POLL_INTERVAL  -> sync.poll_interval_seconds
        LIBERDUS_TIMEOUT        -> sync.request_timeout_seconds
        LIBERDUS_DB_PATH        -> storage.path
        LIBERDUS_LOG_LEVEL      -> logging.level
        LIBERDUS_LOG_FMT        -> logging.format
        LIBERDUS_LOG_AREAS      -> logging.areas  ("sync=debug,gateway=warning")
    """
    cfg = LiberdusConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("network", cfg.network),
                ("sync", cfg.sync),
                ("storage", cfg.storage),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("LIBERDUS_NETID"):
        cfg.network.netid = v
    if v := os.environ.get("LIBERDUS_GATEWAYS"):
        cfg.network.gateways = [g.strip() for g in v.split(",") if g.strip()]
    if v := os.environ.get("LIBERDUS_POLL_INTERVAL"):
        cfg.sync.poll_interval_seconds = float(v)
    if v := os.environ.get("LIBERDUS_TIMEOUT"):
        cfg.sync.request_timeout_seconds = float(v)
    if v := os.environ.get("LIBERDUS_DB_PATH"):
        cfg.storage.path = v
    if v := os.environ.get("LIBERDUS_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("LIBERDUS_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("LIBERDUS_LOG_AREAS"):
        cfg.logging.areas = parse_areas(v)

    return cfg
