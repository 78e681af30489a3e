"""
Tests for configuration loading and input validation helpers.
"""

import json
import os
import pytest
from pathlib import Path
from pydantic import ValidationError

from veil.core.config import ChainConfig, load_config
from veil.core.errors import InvalidArgument
from veil.utils.validation import (
    SYMBOL_PATTERN,
    require_valid,
    validate_address,
    validate_amount,
    validate_deadlines,
    validate_string,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate from VEIL_* variables and any .env in the working dir."""
    for key in list(os.environ):
        if key.startswith("VEIL_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


class TestChainConfig:
    """Tests for ChainConfig."""

    def test_defaults(self):
        config = ChainConfig()
        assert config.token_bits == 64
        assert config.max_bidders_per_auction == 16
        assert config.decryption_timeout_blocks == 10
        assert config.persist_audit is False

    def test_invalid_token_bits(self):
        with pytest.raises(ValidationError):
            ChainConfig(token_bits=12)

    def test_bidder_limit_bounds(self):
        with pytest.raises(ValidationError):
            ChainConfig(max_bidders_per_auction=0)

    def test_ensure_dirs(self, tmp_path):
        config = ChainConfig(data_dir=tmp_path / "d", log_dir=tmp_path / "l")
        config.ensure_dirs()
        assert (tmp_path / "d").is_dir()
        assert (tmp_path / "l").is_dir()


class TestLoadConfig:
    """Tests for load_config layering."""

    def test_defaults_without_sources(self):
        assert load_config() == ChainConfig()

    def test_json_file(self, tmp_path):
        path = tmp_path / "veil.json"
        path.write_text(json.dumps({"token_bits": 32, "decryption_timeout_blocks": 3}))
        config = load_config(str(path))
        assert config.token_bits == 32
        assert config.decryption_timeout_blocks == 3

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "veil.json"
        path.write_text(json.dumps({"max_bidders_per_auction": 4}))
        monkeypatch.setenv("VEIL_MAX_BIDDERS_PER_AUCTION", "8")
        monkeypatch.setenv("VEIL_PERSIST_AUDIT", "true")
        config = load_config(str(path))
        assert config.max_bidders_per_auction == 8
        assert config.persist_audit is True

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("VEIL_DATA_DIR=/tmp/veil-data\n")
        config = load_config()
        os.environ.pop("VEIL_DATA_DIR", None)
        assert config.data_dir == Path("/tmp/veil-data")

    def test_invalid_env_value(self, monkeypatch):
        monkeypatch.setenv("VEIL_TOKEN_BITS", "7")
        with pytest.raises(ValidationError):
            load_config()


class TestValidation:
    """Tests for plaintext argument validation."""

    def test_address(self):
        assert validate_address("0x" + "ab" * 20)[0]
        assert not validate_address("0xab")[0]
        assert not validate_address(123)[0]

    def test_amount_rejects_bool_and_negative(self):
        assert not validate_amount(True)[0]
        assert not validate_amount(-1)[0]
        assert not validate_amount(256, max_val=255)[0]
        assert validate_amount(0)[0]

    def test_symbol_pattern(self):
        assert validate_string("VUSD", "symbol", pattern=SYMBOL_PATTERN)[0]
        assert not validate_string("V USD", "symbol", pattern=SYMBOL_PATTERN)[0]
        assert not validate_string("", "name")[0]

    @pytest.mark.parametrize("current,start,bidding,settlement,ok", [
        (0, 0, 10, 20, True),
        (5, 4, 10, 20, False),
        (0, 10, 10, 20, False),
        (0, 0, 10, 10, False),
        (0, 0, -1, 10, False),
    ])
    def test_deadlines(self, current, start, bidding, settlement, ok):
        assert validate_deadlines(current, start, bidding, settlement)[0] is ok

    def test_require_valid(self):
        with pytest.raises(InvalidArgument):
            require_valid((False, "bad"))
        require_valid((True, ""))
