# memberledger/services/vault.py
from typing import List, Optional

from memberledger.core.types import FinalityReceipt, SignedTransition, StateAndRef
from memberledger.errors import AmbiguousStateError, NotFoundError
from memberledger.storage import StorageBackend


class VaultService:
    """Ledger queries over one party's storage."""

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def find_unconsumed(self, linear_id: str) -> StateAndRef:
        """The single current version of a member. Raises NotFoundError / AmbiguousStateError."""
        states = self.storage.unconsumed(linear_id)
        if not states:
            raise NotFoundError(linear_id)
        if len(states) > 1:
            raise AmbiguousStateError(linear_id, len(states))
        return states[0]

    def query(
        self,
        title: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> List[StateAndRef]:
        return self.storage.query_members(title=title, first_name=first_name, last_name=last_name)

    def record(self, stx: SignedTransition, receipt: Optional[FinalityReceipt] = None) -> None:
        self.storage.record_transaction(stx, receipt)

    def close(self) -> None:
        self.storage.close()
