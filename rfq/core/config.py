"""
Engine configuration for RFQ settlement.

Defines the EIP-712 domain parameters, validation limits and on-disk
locations. Values come from defaults, an optional JSON file, and finally
environment variables (a .env file in the working directory is loaded
first).
"""

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from rfq.core.exceptions import ConfigError
from rfq.crypto import hex_to_bytes, is_valid_address
from rfq.utils.logger import parse_level

# Engine address used when none is configured
DEFAULT_VERIFYING_CONTRACT = "0x" + "00" * 19 + "01"

# Environment variable -> EngineConfig field
ENV_OVERRIDES = {
    "RFQ_DOMAIN_NAME": "domain_name",
    "RFQ_DOMAIN_VERSION": "domain_version",
    "RFQ_CHAIN_ID": "chain_id",
    "RFQ_VERIFYING_CONTRACT": "verifying_contract",
    "RFQ_MAX_ERRORS": "max_errors",
    "RFQ_DATA_DIR": "data_dir",
    "RFQ_LOG_DIR": "log_dir",
    "RFQ_DB_NAME": "db_name",
    "RFQ_LOG_LEVEL": "log_level",
}


@dataclass(frozen=True)
class EngineConfig:
    """Engine-wide configuration parameters"""

    # EIP-712 domain
    domain_name: str = "RFQ"
    domain_version: str = "1"
    chain_id: int = 1
    verifying_contract: str = DEFAULT_VERIFYING_CONTRACT

    # Bid validation
    max_errors: int = 7  # Capacity of the violation list

    # Paths
    data_dir: Path = field(default_factory=lambda: Path("data"))
    log_dir: Path = field(default_factory=lambda: Path("logs"))
    db_name: str = "rfq.db"

    # Logging
    log_level: str = "WARNING"

    def __post_init__(self):
        if not self.domain_name:
            raise ConfigError("domain_name must not be empty")
        if not self.domain_version:
            raise ConfigError("domain_version must not be empty")
        if self.chain_id < 0:
            raise ConfigError("chain_id must be >= 0", {"chain_id": self.chain_id})
        if not is_valid_address(self.verifying_contract):
            raise ConfigError(
                "verifying_contract must be a 0x-prefixed 20-byte address",
                {"verifying_contract": self.verifying_contract},
            )
        if self.max_errors < 1:
            raise ConfigError("max_errors must be >= 1", {"max_errors": self.max_errors})
        try:
            parse_level(self.log_level)
        except ValueError as e:
            raise ConfigError(str(e), {"log_level": self.log_level}) from e

    @property
    def verifying_contract_bytes(self) -> bytes:
        return hex_to_bytes(self.verifying_contract)

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name

    def ensure_dirs(self):
        """Create data and log directories"""
        self.data_dir.mkdir(exist_ok=True, parents=True)
        self.log_dir.mkdir(exist_ok=True, parents=True)


def _coerce(name: str, raw: Any) -> Any:
    """Convert a raw JSON/env value into the type of the named field."""
    try:
        if name in ("chain_id", "max_errors"):
            return int(raw)
        if name in ("data_dir", "log_dir"):
            return Path(raw).expanduser()
        return str(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}", {"value": raw}) from e


def load_config(
    config_path: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    use_dotenv: bool = True,
) -> EngineConfig:
    """
    Load configuration from file and environment, on top of defaults.

    Args:
        config_path: Optional path to a JSON config file
        env: Environment mapping (defaults to os.environ)
        use_dotenv: Load a .env file into os.environ first

    Returns:
        EngineConfig instance
    """
    if use_dotenv and env is None:
        load_dotenv()
    env = os.environ if env is None else env

    known = {f.name for f in fields(EngineConfig)}
    values: Dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read config file {path}", {"error": str(e)}) from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must hold a JSON object")
        unknown = set(data) - known
        if unknown:
            raise ConfigError("Unknown config keys", {"keys": ",".join(sorted(unknown))})
        for key, raw in data.items():
            values[key] = _coerce(key, raw)

    for var, name in ENV_OVERRIDES.items():
        if var in env:
            values[name] = _coerce(name, env[var])

    return replace(EngineConfig(), **values)
