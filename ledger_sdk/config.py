# ledger_sdk/config.py
import os
from dataclasses import dataclass
from typing import Any, Mapping

from errors import ConfigurationError

PUBLIC_GNOSIS_RPC = "https://rpc.gnosischain.com"
ALCHEMY_GNOSIS_RPC = "https://gnosis-mainnet.g.alchemy.com/v2/{key}"


@dataclass(frozen=True)
class LedgerConfig:
    contract_address: str
    rpc_url: str = PUBLIC_GNOSIS_RPC
    chain_id: int = 100
    block_tag: str = "latest"
    request_timeout: int = 20
    receipt_timeout: int = 120
    scan_workers: int = 8
    private_key: str | None = None

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "LedgerConfig":
        """Build from a Flask config (or any dict with the same keys)."""
        address = cfg.get("LENDING_MARKET_ADDRESS")
        if not address:
            raise ConfigurationError("LENDING_MARKET_ADDRESS is required to talk to the lending market")

        rpc_url = cfg.get("LEDGER_RPC_URL")
        if not rpc_url:
            alchemy_key = cfg.get("ALCHEMY_API_KEY")
            rpc_url = ALCHEMY_GNOSIS_RPC.format(key=alchemy_key) if alchemy_key else PUBLIC_GNOSIS_RPC

        block_tag = (cfg.get("LEDGER_BLOCK_TAG") or "latest").lower()
        if block_tag not in {"latest", "finalized", "safe"}:
            raise ConfigurationError(f"Unsupported LEDGER_BLOCK_TAG: {block_tag}")

        return cls(
            contract_address=address,
            rpc_url=rpc_url,
            chain_id=int(cfg.get("LEDGER_CHAIN_ID") or 100),
            block_tag=block_tag,
            request_timeout=int(cfg.get("LEDGER_REQUEST_TIMEOUT") or 20),
            receipt_timeout=int(cfg.get("LEDGER_RECEIPT_TIMEOUT") or 120),
            scan_workers=max(1, int(cfg.get("LEDGER_SCAN_WORKERS") or 8)),
            private_key=cfg.get("SERVICE_ACCOUNT_PRIVATE_KEY") or None,
        )

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        return cls.from_mapping(os.environ)
