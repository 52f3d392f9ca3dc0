"""
Abstract Ledger Interface

DESIGN DECISION: The ledger is reached through two verbs only:
read() for view calls and node queries, write() for signed
transactions. Contract ABIs, signing and JSON-RPC plumbing stay in
the concrete client, so the aggregator and workflows can be tested
against a plain in-memory fake.

Addressing:
- contract_address is a contract -> method is an ABI function name
- contract_address is None        -> method is a raw node RPC method
                                      (eth_getBalance, qn_getTransfersByAddress, ...)
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from coperacha.models.ledger import LedgerReceipt


class LedgerClientInterface(ABC):
    """
    Abstract interface for the ledger network client.
    """

    @abstractmethod
    async def read(
        self,
        contract_address: Optional[str],
        method: str,
        args: Optional[list[Any]] = None,
    ) -> Any:
        """
        Perform a read-only call.

        Returns:
            The decoded return value (raw JSON result for node methods)

        Raises:
            UnsupportedCapabilityError: If the node does not offer the method
            LedgerError: For any other failure
        """
        pass

    @abstractmethod
    async def write(
        self,
        contract_address: str,
        method: str,
        args: Optional[list[Any]] = None,
    ) -> LedgerReceipt:
        """
        Submit a signed transaction and wait until it is mined.

        Writes are never retried.

        Raises:
            ProposalExpiredError: If the contract rejected a vote on an expired proposal
            LedgerWriteError: If the transaction could not be sent or reverted
        """
        pass


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class LedgerWriteError(LedgerError):
    """A transaction was rejected, reverted or never mined."""
    pass


class ProposalExpiredError(LedgerWriteError):
    """The proposal's voting deadline has passed."""
    pass


class ProposalDecodeError(LedgerError):
    """A proposal carried a type or status code we don't know."""
    pass


class UnsupportedCapabilityError(Exception):
    """
    The ledger node does not offer a method (typically an indexing
    extension). Kept apart from LedgerError: the feature is disabled,
    not broken.
    """

    def __init__(self, method: str, message: Optional[str] = None):
        self.method = method
        super().__init__(message or f"Ledger node does not support {method}")
