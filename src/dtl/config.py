from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DTL_", env_file=".env", extra="ignore")

    # L1 RPC
    RPC_URL: str = "http://localhost:8545"
    RPC_TIMEOUT: int = 20
    RPC_MAX_CONNECTIONS: int = 64

    # Storage
    DATA_DIR: str = "dtl_data"

    # Indexing
    EARLIEST_BLOCK: Optional[int] = None
    MAX_ATTEMPTS: int = 3
    RETRY_DELAY: float = 0.8

    # Rollup contracts
    CANONICAL_TX_CHAIN_ADDRESS: Optional[str] = None
    STATE_COMMITMENT_CHAIN_ADDRESS: Optional[str] = None
    SEQUENCER_BATCH_EVENT: str = "SequencerBatchAppended(bytes32)"
    STATE_BATCH_EVENT: str = "StateBatchAppended(bytes32)"

    # Monitoring
    LOG_LEVEL: str = "INFO"

    @field_validator("CANONICAL_TX_CHAIN_ADDRESS", "STATE_COMMITMENT_CHAIN_ADDRESS")
    @classmethod
    def normalize_address(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        s = v.strip().lower()
        if not s.startswith("0x"):
            s = "0x" + s
        if len(s) != 42 or any(c not in "0123456789abcdef" for c in s[2:]):
            raise ValueError(f"invalid contract address: {v}")
        return s

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()

