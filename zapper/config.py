"""
Zapper configuration.

Frozen dataclass loaded from environment variables.
Loads ~/.cln-zapper/zapper.env first if it exists, then reads os.environ.
ZapperContext bundles the config with the keypair derived from NOSTR_KEY;
it is built once at startup and passed by reference to every component.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from signing import KeyPair, derive_keypair

_ENV_FILE = Path.home() / ".cln-zapper" / "zapper.env"

_REQUIRED_FIELDS = ("NOSTR_KEY",)

_DEFAULT_LIGHTNING_RPC = "~/.lightning/bitcoin/lightning-rpc"
_DEFAULT_CHECKPOINT_PATH = "~/.cln-zapper/lastpay_index"

DEFAULT_RELAY_TIMEOUT_MS = 5000


def _positive_int(name: str, default: str) -> int:
    """Read an integer env var that must be > 0."""
    value = int(os.environ.get(name, default).strip())
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value}")
    return value


@dataclass(frozen=True)
class Config:
    """Immutable zapper configuration."""

    # Nostr identity (hex or nsec)
    nostr_key: str

    # Lightning node
    lightning_rpc: str
    wait_timeout_seconds: int

    # Storage
    checkpoint_path: str
    checkpoint_write_attempts: int

    # Relay broadcast
    relay_timeout_ms: int

    # Logging
    log_level: str
    log_file: str | None

    @classmethod
    def load(cls) -> Config:
        """Load configuration from environment variables.

        Raises ValueError if NOSTR_KEY is missing or empty, or if a
        numeric setting is not a positive integer.
        """
        if _ENV_FILE.exists():
            load_dotenv(_ENV_FILE)

        missing = [
            name for name in _REQUIRED_FIELDS
            if not os.environ.get(name, "").strip()
        ]
        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        log_file = os.environ.get("LOG_FILE", "").strip()

        return cls(
            nostr_key=os.environ["NOSTR_KEY"].strip(),
            lightning_rpc=os.path.expanduser(
                os.environ.get("LIGHTNING_RPC", _DEFAULT_LIGHTNING_RPC).strip()
            ),
            wait_timeout_seconds=_positive_int("WAIT_TIMEOUT_SECONDS", "60"),
            checkpoint_path=os.path.expanduser(
                os.environ.get("CHECKPOINT_PATH", _DEFAULT_CHECKPOINT_PATH).strip()
            ),
            checkpoint_write_attempts=_positive_int("CHECKPOINT_WRITE_ATTEMPTS", "3"),
            relay_timeout_ms=_positive_int(
                "RELAY_TIMEOUT_MS", str(DEFAULT_RELAY_TIMEOUT_MS)
            ),
            log_level=os.environ.get("LOG_LEVEL", "INFO").strip().upper(),
            log_file=os.path.expanduser(log_file) if log_file else None,
        )

    @classmethod
    def for_plugin(
        cls,
        nostr_key: str,
        lightning_rpc: str,
        relay_timeout_ms: int = DEFAULT_RELAY_TIMEOUT_MS,
    ) -> Config:
        """Config for plugin mode, where lightningd supplies key and socket."""
        if not nostr_key or not nostr_key.strip():
            raise ValueError("Missing required plugin option: nostr-key")
        if relay_timeout_ms <= 0:
            raise ValueError(
                f"zapper-relay-timeout must be a positive integer, got {relay_timeout_ms}"
            )
        return cls(
            nostr_key=nostr_key.strip(),
            lightning_rpc=lightning_rpc,
            wait_timeout_seconds=60,
            checkpoint_path=os.path.expanduser(_DEFAULT_CHECKPOINT_PATH),
            checkpoint_write_attempts=3,
            relay_timeout_ms=relay_timeout_ms,
            log_level="INFO",
            log_file=None,
        )


@dataclass(frozen=True)
class ZapperContext:
    """Startup-time state shared by the loop, builder and broadcaster."""

    config: Config
    keypair: KeyPair

    @classmethod
    def from_config(cls, config: Config) -> ZapperContext:
        """Derive the receipt-signing keypair once. Raises SigningError on a bad key."""
        return cls(config=config, keypair=derive_keypair(config.nostr_key))
