"""Ledger write receipts."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class LedgerReceipt(BaseModel):
    """
    Result of a mined ledger write.

    events maps an event name to the decoded arguments of every
    occurrence of that event in the receipt logs.
    """

    tx_hash: str
    block_number: Optional[int] = None
    succeeded: bool = True
    events: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)

    def first_event(self, name: str) -> Optional[dict[str, Any]]:
        occurrences = self.events.get(name) or []
        return occurrences[0] if occurrences else None
