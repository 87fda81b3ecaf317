# ledger_sdk/contracts.py
"""
Read/write gateway to the lending market contract.

Every web3 failure is converted to the service's error taxonomy here, so no
caller above this module handles raw web3 exceptions.
"""
import json
import logging
import os
from dataclasses import dataclass
from typing import Any

from eth_account import Account
from eth_utils import event_abi_to_log_topic
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from errors import (
    EventDecodeError,
    LedgerReadError,
    LedgerWriteError,
    LedgerWriteRejectedError,
    LoanNotFoundError,
    SignerNotConfiguredError,
)
from ledger_sdk.config import LedgerConfig
from loans.models import Loan
from loans.snapshot import decode_loan, normalize_address

logger = logging.getLogger(__name__)

# ---------------- ABI ----------------
_ABI_DIR = os.path.join(os.path.dirname(__file__), "abi")

with open(os.path.join(_ABI_DIR, "LendingMarket.abi.json"), encoding="utf-8") as f:
    LENDING_MARKET_ABI = json.load(f)

with open(os.path.join(_ABI_DIR, "ERC20.abi.json"), encoding="utf-8") as f:
    ERC20_ABI = json.load(f)

_ERROR_PREFIX = "InnerCirclesLendingMarket__"

# revert reasons that mean "the loan is already where markLoanAsDefaulted would put it"
_ALREADY_HANDLED_ERRORS = {"InvalidLoanState", "LoanAlreadyRepaid"}
_NOT_ELIGIBLE_ERRORS = {"GracePeriodNotEnded", "LoanNotInDefault", "RepaymentPeriodNotReached"}


def _selector_hex(signature: str) -> str:
    return Web3.keccak(text=signature)[:4].hex().lower().removeprefix("0x")


# 4-byte selector -> short error name, for argument-less custom errors
ERROR_SELECTORS = {
    _selector_hex(f"{e['name']}()"): e["name"].removeprefix(_ERROR_PREFIX)
    for e in LENDING_MARKET_ABI
    if e.get("type") == "error" and not e.get("inputs")
}

# topic0 -> event name
EVENT_TOPICS = {
    event_abi_to_log_topic(e).hex().lower().removeprefix("0x"): e["name"]
    for e in LENDING_MARKET_ABI
    if e.get("type") == "event"
}


@dataclass(frozen=True)
class BlockRef:
    number: int
    timestamp: int


@dataclass(frozen=True)
class DecodedLog:
    event_name: str
    args: dict[str, Any]
    transaction_hash: str | None
    log_index: int | None
    block_number: int | None


def revert_name(exc: Exception) -> str | None:
    """Best-effort custom-error name from a revert (selector data or message text)."""
    blob = " ".join(str(part) for part in (getattr(exc, "data", None), getattr(exc, "message", None), exc) if part)
    lowered = blob.lower()
    for selector, name in ERROR_SELECTORS.items():
        if selector in lowered:
            return name
    for name in ERROR_SELECTORS.values():
        if name in blob:
            return name
    return None


def classify_rejection(name: str | None) -> str:
    if name in _ALREADY_HANDLED_ERRORS:
        return LedgerWriteRejectedError.ALREADY_HANDLED
    if name in _NOT_ELIGIBLE_ERRORS:
        return LedgerWriteRejectedError.NOT_ELIGIBLE
    return LedgerWriteRejectedError.UNKNOWN


def _hex(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        text = bytes(value).hex()
    elif hasattr(value, "hex"):
        text = value.hex()
    else:
        text = str(value)
    return text if text.startswith("0x") else f"0x{text}"


class LedgerClient:
    """Thin web3 wrapper around the lending market.

    Reads accept an optional ``block`` so one evaluation pass can pin every
    read to the same block height.
    """

    def __init__(self, config: LedgerConfig, w3: Web3 | None = None):
        self.config = config
        self.w3 = w3 or Web3(Web3.HTTPProvider(
            config.rpc_url, request_kwargs={"timeout": config.request_timeout}
        ))
        self.address = Web3.to_checksum_address(config.contract_address)
        self.contract = self.w3.eth.contract(address=self.address, abi=LENDING_MARKET_ABI)
        self._private_key = config.private_key
        self._account = Account.from_key(config.private_key) if config.private_key else None
        self._token_address: str | None = None

    # ---------------- signer ----------------
    @property
    def can_sign(self) -> bool:
        return self._account is not None

    @property
    def signer_address(self) -> str | None:
        return self._account.address if self._account else None

    # ---------------- reads ----------------
    def _block_id(self, block: int | None):
        return self.config.block_tag if block is None else int(block)

    def _call(self, fn_name: str, *args, block: int | None = None):
        try:
            return getattr(self.contract.functions, fn_name)(*args).call(
                block_identifier=self._block_id(block)
            )
        except ContractLogicError as e:
            if revert_name(e) == "LoanDoesNotExist" and args:
                raise LoanNotFoundError(int(args[0])) from e
            raise LedgerReadError(f"{fn_name}{args} reverted: {e}") from e
        except Exception as e:
            raise LedgerReadError(f"{fn_name}{args} failed: {e}") from e

    def get_latest_block(self) -> BlockRef:
        try:
            block = self.w3.eth.get_block(self.config.block_tag)
        except Exception as e:
            raise LedgerReadError(f"Could not fetch {self.config.block_tag} block: {e}") from e
        return BlockRef(number=int(block["number"]), timestamp=int(block["timestamp"]))

    def get_current_timestamp(self) -> int:
        """Ledger time (latest/finalized block), never wall-clock."""
        return self.get_latest_block().timestamp

    def get_block_number(self) -> int:
        return self.get_latest_block().number

    def get_loan(self, loan_id: int, block: int | None = None) -> Loan:
        raw = self._call("getLoan", int(loan_id), block=block)
        try:
            return decode_loan(raw, loan_id)
        except LoanNotFoundError:
            raise
        except (ValueError, TypeError) as e:
            raise LedgerReadError(f"Loan {loan_id} record could not be decoded: {e}") from e

    def get_total_loan_count(self, block: int | None = None) -> int:
        return int(self._call("totalLoans", block=block))

    def get_amount_repaid(self, loan_id: int, block: int | None = None) -> int:
        return int(self._call("amountRepaid", int(loan_id), block=block))

    def get_total_owed(self, loan_id: int, block: int | None = None) -> int:
        return int(self._call("calculateTotalOwed", int(loan_id), block=block))

    def calculate_interest_rate(self, voucher_count: int) -> int:
        return int(self._call("calculateInterestRate", int(voucher_count)))

    def get_token_address(self) -> str:
        # crcToken is immutable on the contract, one lookup per process is enough
        if self._token_address is None:
            self._token_address = normalize_address(self._call("crcToken"))
        return self._token_address

    def get_token_balance(self, account: str, block: int | None = None) -> int:
        token = self.w3.eth.contract(address=self.get_token_address(), abi=ERC20_ABI)
        try:
            return int(token.functions.balanceOf(Web3.to_checksum_address(account)).call(
                block_identifier=self._block_id(block)
            ))
        except Exception as e:
            raise LedgerReadError(f"balanceOf({account}) failed: {e}") from e

    # ---------------- events ----------------
    def get_event_logs(self, from_block: int, to_block: int | str = "latest") -> list:
        try:
            return list(self.w3.eth.get_logs({
                "address": self.address,
                "fromBlock": int(from_block),
                "toBlock": to_block if isinstance(to_block, str) else int(to_block),
            }))
        except Exception as e:
            raise LedgerReadError(f"get_logs({from_block}..{to_block}) failed: {e}") from e

    def decode_event_log(self, raw_log) -> DecodedLog:
        topics = raw_log.get("topics") or []
        if not topics:
            raise EventDecodeError("Log has no topics")
        topic0 = (_hex(topics[0]) or "").lower().removeprefix("0x")
        event_name = EVENT_TOPICS.get(topic0)
        if not event_name:
            raise EventDecodeError(f"Unknown event topic 0x{topic0}")
        try:
            decoded = getattr(self.contract.events, event_name)().process_log(raw_log)
        except Exception as e:
            raise EventDecodeError(f"Could not decode {event_name} log: {e}") from e
        return DecodedLog(
            event_name=event_name,
            args=dict(decoded["args"]),
            transaction_hash=_hex(decoded.get("transactionHash")),
            log_index=decoded.get("logIndex"),
            block_number=decoded.get("blockNumber"),
        )

    # ---------------- writes ----------------
    def _sign_and_send(self, tx: dict) -> str:
        """Signs and sends a transaction, returns the 0x transaction hash."""
        signed = self.w3.eth.account.sign_transaction(tx, self._private_key)
        raw_tx = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
        return _hex(self.w3.eth.send_raw_transaction(raw_tx))

    def _transact(self, fn_name: str, *args) -> str:
        if not self.can_sign:
            raise SignerNotConfiguredError(
                "SERVICE_ACCOUNT_PRIVATE_KEY not configured; cannot submit " + fn_name
            )
        owner = self.signer_address
        try:
            tx = getattr(self.contract.functions, fn_name)(*args).build_transaction({
                "from": owner,
                "nonce": self.w3.eth.get_transaction_count(owner, "pending"),
                "gasPrice": self.w3.eth.gas_price,
                "chainId": self.config.chain_id,
            })
            tx_hash = self._sign_and_send(tx)
        except ContractLogicError as e:
            name = revert_name(e)
            raise LedgerWriteRejectedError(
                f"{fn_name}{args} rejected: {name or e}", reason=classify_rejection(name)
            ) from e
        except Exception as e:
            raise LedgerWriteError(f"{fn_name}{args} failed: {e}") from e
        logger.info("Submitted %s%s tx=%s", fn_name, args, tx_hash)
        return tx_hash

    def wait_for_receipt(self, tx_hash: str) -> dict:
        """Block until the transaction is mined (bounded by receipt_timeout)."""
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.config.receipt_timeout
            )
        except TimeExhausted as e:
            raise LedgerWriteError(f"Receipt for {tx_hash} not seen within {self.config.receipt_timeout}s") from e
        except Exception as e:
            raise LedgerWriteError(f"Receipt lookup for {tx_hash} failed: {e}") from e
        if receipt.get("status") != 1:
            raise LedgerWriteRejectedError(f"Transaction {tx_hash} reverted", transaction_hash=tx_hash)
        return {
            "transactionHash": _hex(receipt.get("transactionHash")) or tx_hash,
            "blockNumber": receipt.get("blockNumber"),
            "gasUsed": receipt.get("gasUsed"),
            "status": receipt.get("status"),
        }

    def submit_mark_defaulted(self, loan_id: int) -> str:
        return self._transact("markLoanAsDefaulted", int(loan_id))

    # administrative / testing overrides, not part of the production flow
    def set_vouching_deadline(self, loan_id: int, new_deadline: int) -> str:
        return self._transact("setVouchingDeadline", int(loan_id), int(new_deadline))

    def set_repayment_deadline(self, loan_id: int, new_deadline: int) -> str:
        return self._transact("setRepaymentDeadline", int(loan_id), int(new_deadline))

    def set_grace_period(self, loan_id: int, new_grace_period: int) -> str:
        return self._transact("setGracePeriod", int(loan_id), int(new_grace_period))
