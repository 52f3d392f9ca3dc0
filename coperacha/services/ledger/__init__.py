"""
Ledger Services Package

Abstract ledger client, the web3.py implementation and the contract
definitions shared by both.
"""

from coperacha.services.ledger.interface import (
    LedgerClientInterface,
    LedgerError,
    LedgerWriteError,
    ProposalDecodeError,
    ProposalExpiredError,
    UnsupportedCapabilityError,
)
from coperacha.services.ledger.web3_client import Web3LedgerClient

__all__ = [
    # Interface
    "LedgerClientInterface",
    # Exceptions
    "LedgerError",
    "LedgerWriteError",
    "ProposalDecodeError",
    "ProposalExpiredError",
    "UnsupportedCapabilityError",
    # web3 implementation
    "Web3LedgerClient",
]
