# memberledger/__init__.py
"""
Member Ledger: multi-party authorised records on a double-spend-preventing ledger.
A member is issued or edited only when creator and viewer both sign, and an edit
consumes the previous version so two conflicting edits can never both finalise.
"""

from memberledger.config import LedgerConfig
from memberledger.contract.verifier import MemberContract
from memberledger.core.types import Member, MemberModel, Party
from memberledger.crypto.keys import PartyKeyPair
from memberledger.node import Node, create_network

__version__ = "0.1.0-dev"

__all__ = [
    "LedgerConfig",
    "Member",
    "MemberContract",
    "MemberModel",
    "Node",
    "Party",
    "PartyKeyPair",
    "create_network",
]
