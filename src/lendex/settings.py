"""
Settings read from the environment (LENDEX_*) or a .env file.
The core only ever sees the plain IndexerConfig built from them.
"""
from __future__ import annotations

from typing import Any, Literal, Optional

from eth_utils import is_address
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .domain.errors import ConfigurationError
from .domain.models import IndexerConfig


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LENDEX_", env_file=".env", extra="ignore")

    # Node / contract
    rpc_url: str = "http://localhost:8545"
    contract_address: Optional[str] = None
    start_block: int = Field(default=0, ge=0)
    rpc_timeout_s: float = Field(default=20.0, gt=0)

    # Indexer
    output_dir: str = "indexer_output"
    batch_size: int = Field(default=1_000, gt=0)
    poll_interval_s: float = Field(default=5.0, gt=0)
    batch_delay_s: float = Field(default=0.1, ge=0)
    unknown_signatures: Literal["drop", "retain"] = "drop"
    resume: bool = False

    # Query service
    chronological_aggregation: bool = False
    recent_activity_limit: int = Field(default=10, ge=0)

    # Logging
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    @field_validator("contract_address")
    @classmethod
    def _check_address(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not is_address(v):
            raise ValueError(f"not an EVM address: {v!r}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()

    def indexer_config(self) -> IndexerConfig:
        if not self.contract_address:
            raise ConfigurationError("contract address is required (LENDEX_CONTRACT_ADDRESS or --contract)")
        return IndexerConfig(
            rpc_url=self.rpc_url,
            contract_address=self.contract_address,
            start_block=self.start_block,
            output_dir=self.output_dir,
            batch_size=self.batch_size,
            poll_interval_s=self.poll_interval_s,
            batch_delay_s=self.batch_delay_s,
            rpc_timeout_s=self.rpc_timeout_s,
            unknown_signatures=self.unknown_signatures,
            resume=self.resume,
        )


def load_settings(**overrides: Any) -> Settings:
    """Environment first, then non-None overrides (CLI flags) on top."""
    try:
        return Settings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        raise ConfigurationError(f"invalid settings: {e}") from e
