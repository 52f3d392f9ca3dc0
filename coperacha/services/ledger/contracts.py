"""
Contract Definitions

ABIs, method names and value encodings of the two contracts we talk
to: the community wallet factory and the community wallet itself.

IMPORTANT: The proposal type/status codes below are the contract's
external encoding. They live here and nowhere else. An unknown code
is a decode error, never a silent default.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Sequence

from coperacha.models.finance import Amount, Proposal, ProposalStatus, ProposalType
from coperacha.services.ledger.interface import ProposalDecodeError


# =============================================================================
# METHOD NAMES
# =============================================================================

# Factory
CREATE_WALLET = "create"
GET_ALL_WALLETS = "getAllWallets"
WALLET_CREATED_EVENT = "WalletCreated"

# Community wallet
CREATE_PROPOSAL = "crearPropuesta"
GET_PROPOSAL = "verPropuesta"
CONFIRM_PROPOSAL = "confirmarPropuesta"
PROPOSAL_COUNT = "totalPropuestas"
WALLET_BALANCE = "saldoWallet"

# Node JSON-RPC
GET_BALANCE = "eth_getBalance"
GET_BLOCK_BY_NUMBER = "eth_getBlockByNumber"
GET_TRANSFERS = "qn_getTransfersByAddress"
GET_TRANSACTIONS = "qn_getTransactionsByAddress"

# Revert reason the wallet contract uses for late votes
PROPOSAL_EXPIRED_REASON = "La propuesta ha expirado"


# =============================================================================
# ABIS
# =============================================================================

FACTORY_ABI = [
    {
        "inputs": [
            {"internalType": "address[]", "name": "_miembros", "type": "address[]"},
            {"internalType": "address", "name": "_creador", "type": "address"},
            {"internalType": "string", "name": "_nombre", "type": "string"},
            {"internalType": "string", "name": "_descripcion", "type": "string"},
        ],
        "name": CREATE_WALLET,
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": GET_ALL_WALLETS,
        "outputs": [{"internalType": "address[]", "name": "", "type": "address[]"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "owner", "type": "address"},
            {"indexed": False, "internalType": "address", "name": "walletAddress", "type": "address"},
        ],
        "name": WALLET_CREATED_EVENT,
        "type": "event",
    },
]

COMMUNITY_WALLET_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "_destinatario", "type": "address"},
            {"internalType": "address", "name": "_miembro", "type": "address"},
            {"internalType": "uint256", "name": "_monto", "type": "uint256"},
            {"internalType": "string", "name": "_descripcion", "type": "string"},
            {"internalType": "bool", "name": "_esGasto", "type": "bool"},
        ],
        "name": CREATE_PROPOSAL,
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "_idPropuesta", "type": "uint256"}],
        "name": GET_PROPOSAL,
        "outputs": [
            {"internalType": "address", "name": "destinatario", "type": "address"},
            {"internalType": "uint256", "name": "monto", "type": "uint256"},
            {"internalType": "string", "name": "descripcion", "type": "string"},
            {"internalType": "uint256", "name": "fechaLimite", "type": "uint256"},
            {"internalType": "uint256", "name": "confirmaciones", "type": "uint256"},
            {"internalType": "uint8", "name": "tipo", "type": "uint8"},
            {"internalType": "uint8", "name": "estado", "type": "uint8"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "_idPropuesta", "type": "uint256"},
            {"internalType": "address", "name": "_miembro", "type": "address"},
        ],
        "name": CONFIRM_PROPOSAL,
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": PROPOSAL_COUNT,
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": WALLET_BALANCE,
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

FACTORY_METHODS = frozenset(
    entry["name"] for entry in FACTORY_ABI if entry["type"] == "function"
)


def abi_for(method: str) -> list[dict]:
    """Pick the ABI that declares a function name."""
    return FACTORY_ABI if method in FACTORY_METHODS else COMMUNITY_WALLET_ABI


# =============================================================================
# PROPOSAL ENCODING
# =============================================================================

PROPOSAL_TYPE_CODES: dict[int, ProposalType] = {
    0: ProposalType.EXPENSE,
    1: ProposalType.MEMBERSHIP_CHANGE,
}

PROPOSAL_STATUS_CODES: dict[int, ProposalStatus] = {
    0: ProposalStatus.PENDING,
    1: ProposalStatus.EXECUTED,
    2: ProposalStatus.EXPIRED,
}


def decode_proposal_type(code: Any) -> ProposalType:
    try:
        return PROPOSAL_TYPE_CODES[int(code)]
    except (KeyError, TypeError, ValueError):
        raise ProposalDecodeError(f"Unknown proposal type code: {code!r}")


def decode_proposal_status(code: Any) -> ProposalStatus:
    try:
        return PROPOSAL_STATUS_CODES[int(code)]
    except (KeyError, TypeError, ValueError):
        raise ProposalDecodeError(f"Unknown proposal status code: {code!r}")


def decode_proposal(proposal_id: int, raw: Sequence[Any], rate: Decimal) -> Proposal:
    """
    Build a Proposal from the verPropuesta tuple:
    (recipient, amount, description, deadline, confirmations, type, status)
    """
    if len(raw) < 7:
        raise ProposalDecodeError(
            f"Proposal {proposal_id} has {len(raw)} fields, expected 7"
        )
    recipient, amount, description, deadline, confirmations, type_code, status_code = raw[:7]
    return Proposal(
        id=proposal_id,
        recipient=str(recipient).lower(),
        amount=Amount.from_wei(int(amount), rate),
        description=str(description or ""),
        deadline=datetime.fromtimestamp(int(deadline), tz=timezone.utc),
        confirmations=int(confirmations),
        type=decode_proposal_type(type_code),
        status=decode_proposal_status(status_code),
    )
