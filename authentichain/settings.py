# authentichain/settings.py
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    RPC_URL: str = "http://127.0.0.1:8545"
    # default is the first contract a fresh hardhat node deploys
    CONTRACT_ADDRESS: str = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
    CHAIN_ID: int = 31337
    REGISTRY_BACKEND: Literal["contract", "memory"] = "contract"

    MANUFACTURER_PK: Optional[str] = None
    SUBMITTER_PKS: Optional[str] = None

    DATABASE_URL: str = "sqlite:///./data.db"
    HOST: str = "127.0.0.1"
    PORT: int = 8000

    TX_GAS: int = 500000
    TX_TIMEOUT: int = 120
    LOOKUP_CACHE_TTL: int = 300
    LOOKUP_CACHE_SIZE: int = 1024

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def submitter_keys(self) -> List[str]:
        """Private keys the contract client may send transactions with."""
        keys = [k.strip() for k in (self.SUBMITTER_PKS or "").split(",") if k.strip()]
        if self.MANUFACTURER_PK and self.MANUFACTURER_PK not in keys:
            keys.append(self.MANUFACTURER_PK)
        return keys


settings = Settings()
