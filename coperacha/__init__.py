"""
Coperacha - Source Package

A conversational assistant that registers people, links their ledger
wallets and lets groups run shared (community) wallets from a chat.

DESIGN PRINCIPLES:
1. One conversation per person, never observed mid-transition
2. Validate every input, re-prompt instead of failing
3. Ledger reads are best-effort per section, never all-or-nothing
4. Ledger writes happen only after explicit confirmation, and are never retried silently
5. Storage, ledger and transport are swappable
"""

__version__ = "1.0.0"
__author__ = "Coperacha Team"
