"""Ledger-writing workflows."""

from coperacha.workflows.community_wallet import CommunityWalletWorkflow
from coperacha.workflows.proposals import ProposalWorkflow

__all__ = ["CommunityWalletWorkflow", "ProposalWorkflow"]
