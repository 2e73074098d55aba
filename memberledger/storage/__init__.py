"""
Storage backends for finalised member transitions (a party's vault).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from memberledger.core.types import FinalityReceipt, SignedTransition, StateAndRef
from memberledger.crypto.keys import utc_now


@dataclass(frozen=True)
class StoredTransition:
    stx: SignedTransition
    receipt: Optional[FinalityReceipt]
    recorded_at: str


def contains_text(value: Optional[str], needle: Optional[str]) -> bool:
    """Literal, case-insensitive substring match. An empty needle matches anything."""
    if not needle:
        return True
    return value is not None and needle.casefold() in value.casefold()


class StorageBackend(ABC):
    """Abstract base for all vault implementations."""

    @abstractmethod
    def record_transaction(self, stx: SignedTransition, receipt: Optional[FinalityReceipt] = None) -> None:
        """Store a finalised transition: inputs become consumed, outputs unconsumed. Idempotent."""

    @abstractmethod
    def load_transaction(self, tx_id: str) -> Optional[StoredTransition]:
        pass

    @abstractmethod
    def list_transactions(self) -> List[StoredTransition]:
        pass

    @abstractmethod
    def unconsumed(self, linear_id: str) -> List[StateAndRef]:
        pass

    @abstractmethod
    def history(self, linear_id: str) -> List[Tuple[StateAndRef, Optional[str]]]:
        """Every recorded version of a member, oldest first, with the id of the consuming transition."""

    @abstractmethod
    def query_members(
        self,
        title: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> List[StateAndRef]:
        """Unconsumed members whose fields contain the given substrings (case-insensitive)."""

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class MemoryStorage(StorageBackend):
    """Process-local vault. Nothing survives the process."""

    def __init__(self):
        self._transactions: Dict[str, StoredTransition] = {}
        self._states: Dict[Tuple[str, int], StateAndRef] = {}
        self._consumed_by: Dict[Tuple[str, int], str] = {}

    def record_transaction(self, stx: SignedTransition, receipt: Optional[FinalityReceipt] = None) -> None:
        tx_id = stx.id
        if tx_id in self._transactions:
            return
        self._transactions[tx_id] = StoredTransition(stx, receipt, utc_now())
        for consumed in stx.tx.inputs:
            key = (consumed.ref.tx_id, consumed.ref.index)
            self._states.setdefault(key, consumed)
            self._consumed_by[key] = tx_id
        for index in range(len(stx.tx.outputs)):
            self._states[(tx_id, index)] = stx.tx.out_ref(index)

    def load_transaction(self, tx_id: str) -> Optional[StoredTransition]:
        return self._transactions.get(tx_id)

    def list_transactions(self) -> List[StoredTransition]:
        return sorted(self._transactions.values(), key=lambda t: t.recorded_at)

    def unconsumed(self, linear_id: str) -> List[StateAndRef]:
        return [
            sar for key, sar in self._states.items()
            if sar.state.linear_id == linear_id and key not in self._consumed_by
        ]

    def history(self, linear_id: str) -> List[Tuple[StateAndRef, Optional[str]]]:
        return [
            (sar, self._consumed_by.get(key))
            for key, sar in self._states.items()
            if sar.state.linear_id == linear_id
        ]

    def query_members(self, title=None, first_name=None, last_name=None) -> List[StateAndRef]:
        return [
            sar for key, sar in self._states.items()
            if key not in self._consumed_by
            and contains_text(sar.state.title, title)
            and contains_text(sar.state.first_name, first_name)
            and contains_text(sar.state.last_name, last_name)
        ]

    def close(self) -> None:
        pass


def create_storage(uri: str) -> StorageBackend:
    if uri in ("memory:", "memory://"):
        return MemoryStorage()

    if uri.startswith("sqlite://"):
        from .sqlite import SQLiteStorage
        raw_path = uri[len("sqlite://"):].lstrip("/")
        if not raw_path.startswith('/'):
            raw_path = '/' + raw_path
        return SQLiteStorage(Path(raw_path).resolve())

    raise ValueError(f"Unsupported storage URI: {uri}")


from .sqlite import SQLiteStorage

__all__ = ["StorageBackend", "StoredTransition", "MemoryStorage", "create_storage", "SQLiteStorage"]
