"""
Ledger Client using web3.py

DESIGN DECISION: We use the synchronous web3.py HTTP provider and
run every call in a worker thread because:
1. One provider instance is shared by all conversations
2. web3's sync API is the most stable across releases
3. It keeps the threading model identical to the Sheets backend

This service handles:
1. Contract view calls by ABI (factory and community wallets)
2. Raw JSON-RPC for node methods (balances, blocks, indexing extensions)
3. Signed writes, mined receipts and decoded events

CRITICAL: Reads are retried on connection errors. Writes are NEVER
retried; a resent transaction could create a second wallet.
"""

import asyncio
import re
from typing import Any, Optional

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception
from web3.logs import DISCARD

from coperacha.config import get_settings
from coperacha.models.ledger import LedgerReceipt
from coperacha.services.ledger.contracts import PROPOSAL_EXPIRED_REASON, abi_for
from coperacha.services.ledger.interface import (
    LedgerClientInterface,
    LedgerError,
    LedgerWriteError,
    ProposalExpiredError,
    UnsupportedCapabilityError,
)

logger = structlog.get_logger(__name__)

METHOD_NOT_FOUND = -32601
UNSUPPORTED_MARKERS = ("not supported", "does not exist", "not found", "not available")
_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _checksum_args(value: Any) -> Any:
    """web3 only accepts checksummed addresses as contract arguments."""
    if isinstance(value, str) and _ADDRESS.match(value):
        return Web3.to_checksum_address(value)
    if isinstance(value, (list, tuple)):
        return [_checksum_args(v) for v in value]
    return value


def _normalize(value: Any) -> Any:
    """Lower-case addresses and unwrap tuples in decoded results."""
    if isinstance(value, str) and _ADDRESS.match(value):
        return value.lower()
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, bytes):
        return "0x" + value.hex()
    return value


def _is_unsupported(error: dict) -> bool:
    if error.get("code") == METHOD_NOT_FOUND:
        return True
    message = str(error.get("message", "")).lower()
    return any(marker in message for marker in UNSUPPORTED_MARKERS)


class Web3LedgerClient(LedgerClientInterface):
    """
    Ledger client backed by a JSON-RPC node.

    Flow for a write:
    1. Build the transaction from the signer account
    2. Sign locally and send the raw transaction
    3. Wait for the receipt and decode its events
    """

    def __init__(self, web3: Optional[Web3] = None):
        self._settings = get_settings().ledger
        self._w3 = web3 or Web3(
            Web3.HTTPProvider(
                self._settings.rpc_url,
                request_kwargs={"timeout": self._settings.request_timeout_seconds},
            )
        )
        self._account = self._w3.eth.account.from_key(self._settings.signer_private_key)
        # one signer, one nonce sequence
        self._write_lock = asyncio.Lock()

    @property
    def signer_address(self) -> str:
        return self._account.address.lower()

    def _contract(self, address: str, method: str):
        return self._w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=abi_for(method),
        )

    # =========================================================================
    # READS
    # =========================================================================

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((OSError, TimeoutError)),
        reraise=True,
    )
    def _rpc(self, method: str, params: list[Any]) -> Any:
        response = self._w3.provider.make_request(method, params)
        error = response.get("error")
        if error:
            if not isinstance(error, dict):
                error = {"message": str(error)}
            if _is_unsupported(error):
                raise UnsupportedCapabilityError(method, error.get("message"))
            raise LedgerError(f"{method} failed: {error.get('message', error)}")
        return response.get("result")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((OSError, TimeoutError)),
        reraise=True,
    )
    def _call(self, contract_address: str, method: str, args: list[Any]) -> Any:
        contract = self._contract(contract_address, method)
        function = contract.functions[method](*_checksum_args(args))
        return _normalize(function.call())

    async def read(
        self,
        contract_address: Optional[str],
        method: str,
        args: Optional[list[Any]] = None,
    ) -> Any:
        args = list(args or [])
        try:
            if contract_address is None:
                return await asyncio.to_thread(self._rpc, method, args)
            return await asyncio.to_thread(self._call, contract_address, method, args)
        except (UnsupportedCapabilityError, LedgerError):
            raise
        except (Web3Exception, OSError, TimeoutError, ValueError) as e:
            raise LedgerError(f"{method} failed: {e}")

    # =========================================================================
    # WRITES
    # =========================================================================

    def _send(self, contract_address: str, method: str, args: list[Any]) -> LedgerReceipt:
        contract = self._contract(contract_address, method)
        function = contract.functions[method](*_checksum_args(args))

        tx = function.build_transaction({
            "from": self._account.address,
            "nonce": self._w3.eth.get_transaction_count(self._account.address),
        })
        signed = self._account.sign_transaction(tx)
        tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self._w3.eth.wait_for_transaction_receipt(
            tx_hash,
            timeout=max(self._settings.request_timeout_seconds, 120),
        )

        if receipt.get("status") == 0:
            raise LedgerWriteError(f"{method} reverted in tx {tx_hash.hex()}")

        events: dict[str, list[dict[str, Any]]] = {}
        for entry in contract.abi:
            if entry.get("type") != "event":
                continue
            name = entry["name"]
            decoded = contract.events[name]().process_receipt(receipt, errors=DISCARD)
            if decoded:
                events[name] = [
                    {key: _normalize(value) for key, value in dict(log["args"]).items()}
                    for log in decoded
                ]

        return LedgerReceipt(
            tx_hash=_normalize(bytes(tx_hash)),
            block_number=receipt.get("blockNumber"),
            succeeded=True,
            events=events,
        )

    async def write(
        self,
        contract_address: str,
        method: str,
        args: Optional[list[Any]] = None,
    ) -> LedgerReceipt:
        args = list(args or [])
        async with self._write_lock:
            try:
                receipt = await asyncio.to_thread(self._send, contract_address, method, args)
            except LedgerWriteError:
                raise
            except ContractLogicError as e:
                if PROPOSAL_EXPIRED_REASON.lower() in str(e).lower():
                    raise ProposalExpiredError(PROPOSAL_EXPIRED_REASON)
                raise LedgerWriteError(f"{method} rejected: {e}")
            except TimeExhausted as e:
                raise LedgerWriteError(f"{method} was not mined in time: {e}")
            except (Web3Exception, OSError, TimeoutError, ValueError) as e:
                raise LedgerWriteError(f"{method} failed: {e}")

        logger.info(
            "ledger_write_mined",
            method=method,
            contract=contract_address,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
        )
        return receipt
