"""Tests for zapper configuration loading."""

from __future__ import annotations

from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest
from nostr_sdk import Keys

from config import Config, ZapperContext
from signing import SigningError

_KEYS = Keys.generate()
_HEX_KEY = _KEYS.secret_key().to_hex()

_ALL_KEYS = [
    "NOSTR_KEY", "LIGHTNING_RPC", "WAIT_TIMEOUT_SECONDS", "CHECKPOINT_PATH",
    "CHECKPOINT_WRITE_ATTEMPTS", "RELAY_TIMEOUT_MS", "LOG_LEVEL", "LOG_FILE",
]


@pytest.fixture(autouse=True)
def _no_env_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Point the dotenv file somewhere that does not exist."""
    monkeypatch.setattr("config._ENV_FILE", tmp_path / "missing.env")


@pytest.fixture()
def env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set the required env var and clear optional ones."""
    for key in _ALL_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("NOSTR_KEY", _HEX_KEY)


def test_load_defaults(env: None) -> None:
    cfg = Config.load()
    assert cfg.nostr_key == _HEX_KEY
    assert cfg.lightning_rpc.endswith(".lightning/bitcoin/lightning-rpc")
    assert not cfg.lightning_rpc.startswith("~")
    assert cfg.checkpoint_path.endswith(".cln-zapper/lastpay_index")
    assert cfg.relay_timeout_ms == 5000
    assert cfg.wait_timeout_seconds == 60
    assert cfg.checkpoint_write_attempts == 3
    assert cfg.log_level == "INFO"
    assert cfg.log_file is None


def test_load_overrides(env: None, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LIGHTNING_RPC", "/tmp/lightning-rpc")
    monkeypatch.setenv("CHECKPOINT_PATH", "/var/lib/zapper/index")
    monkeypatch.setenv("RELAY_TIMEOUT_MS", "2500")
    monkeypatch.setenv("WAIT_TIMEOUT_SECONDS", "10")
    monkeypatch.setenv("CHECKPOINT_WRITE_ATTEMPTS", "5")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("LOG_FILE", "/tmp/zapper.log")
    cfg = Config.load()
    assert cfg.lightning_rpc == "/tmp/lightning-rpc"
    assert cfg.checkpoint_path == "/var/lib/zapper/index"
    assert cfg.relay_timeout_ms == 2500
    assert cfg.wait_timeout_seconds == 10
    assert cfg.checkpoint_write_attempts == 5
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file == "/tmp/zapper.log"


def test_load_missing_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NOSTR_KEY", raising=False)
    with pytest.raises(ValueError, match="NOSTR_KEY"):
        Config.load()


def test_load_empty_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NOSTR_KEY", "   ")
    with pytest.raises(ValueError, match="NOSTR_KEY"):
        Config.load()


@pytest.mark.parametrize("value", ["0", "-5", "abc"])
def test_load_bad_timeout(env: None, monkeypatch: pytest.MonkeyPatch, value: str) -> None:
    monkeypatch.setenv("RELAY_TIMEOUT_MS", value)
    with pytest.raises(ValueError):
        Config.load()


def test_load_reads_env_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    # load_dotenv writes straight into os.environ; setenv first so that
    # monkeypatch records the original values and restores them afterwards.
    for key in _ALL_KEYS:
        monkeypatch.setenv(key, "placeholder")
        monkeypatch.delenv(key)
    env_file = tmp_path / "zapper.env"
    env_file.write_text(f"NOSTR_KEY={_HEX_KEY}\nRELAY_TIMEOUT_MS=1234\n")
    monkeypatch.setattr("config._ENV_FILE", env_file)

    cfg = Config.load()
    assert cfg.nostr_key == _HEX_KEY
    assert cfg.relay_timeout_ms == 1234


def test_config_is_frozen(env: None) -> None:
    cfg = Config.load()
    with pytest.raises(FrozenInstanceError):
        cfg.relay_timeout_ms = 1  # type: ignore[misc]


def test_for_plugin() -> None:
    cfg = Config.for_plugin(_HEX_KEY, "/ln/lightning-rpc", relay_timeout_ms=800)
    assert cfg.lightning_rpc == "/ln/lightning-rpc"
    assert cfg.relay_timeout_ms == 800


def test_for_plugin_requires_key() -> None:
    with pytest.raises(ValueError, match="nostr-key"):
        Config.for_plugin("", "/ln/lightning-rpc")


# -- ZapperContext -------------------------------------------------------------


def test_context_derives_keypair(env: None) -> None:
    ctx = ZapperContext.from_config(Config.load())
    assert ctx.keypair.pubkey == _KEYS.public_key().to_hex()


def test_context_rejects_bad_key(env: None, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NOSTR_KEY", "definitely-not-a-key")
    with pytest.raises(SigningError):
        ZapperContext.from_config(Config.load())
