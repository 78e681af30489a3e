"""
Chain configuration parameters for Veil.

Defines ciphertext widths, auction limits, decryption timeouts and
operational paths. Values come from defaults, an optional JSON file and
VEIL_* environment variables (a .env file is honoured), in that order.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "VEIL_"


class ChainConfig(BaseModel):
    """Chain-wide configuration parameters"""

    # Ciphertext parameters
    token_bits: int = 64  # Bit width of encrypted balances and amounts
    token_decimals: int = 6

    # Auction parameters
    max_bidders_per_auction: int = Field(default=16, ge=1, le=1024)

    # Decryption oracle
    decryption_timeout_blocks: int = Field(default=10, ge=1)

    # Persistence
    persist_audit: bool = False

    # Paths
    data_dir: Path = Path("data")
    log_dir: Path = Path("logs")

    @field_validator("token_bits")
    @classmethod
    def _check_bits(cls, v: int) -> int:
        if v not in (8, 16, 32, 64):
            raise ValueError("token_bits must be one of 8, 16, 32, 64")
        return v

    def ensure_dirs(self) -> None:
        """Create data and log directories"""
        self.data_dir.mkdir(exist_ok=True, parents=True)
        self.log_dir.mkdir(exist_ok=True, parents=True)


def _env_overrides() -> Dict[str, Any]:
    """Collect VEIL_<FIELD> environment variables for known fields."""
    overrides = {}
    for name in ChainConfig.model_fields:
        value = os.environ.get(ENV_PREFIX + name.upper())
        if value is not None:
            overrides[name] = value
    return overrides


def load_config(config_path: Optional[str] = None) -> ChainConfig:
    """
    Load configuration from file and environment, falling back to defaults.

    Args:
        config_path: Optional path to a JSON config file

    Returns:
        ChainConfig instance

    Raises:
        pydantic.ValidationError: If a value fails validation
    """
    load_dotenv(find_dotenv(usecwd=True))

    values: Dict[str, Any] = {}
    if config_path:
        values.update(json.loads(Path(config_path).read_text()))
    values.update(_env_overrides())

    return ChainConfig(**values)
