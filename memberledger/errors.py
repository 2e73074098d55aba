# memberledger/errors.py
"""
Error taxonomy for member ledger operations.

Every error aborts the whole in-flight operation. Only conflicts and
timeouts are worth retrying (with fresh state); the rest need the caller
to fix something first.
"""
from typing import Iterable, List, Optional


class MemberLedgerError(Exception):
    retryable = False


class ValidationError(MemberLedgerError):
    """Malformed caller input. Raised before any lookup or network call."""


class IdentityResolutionError(MemberLedgerError):
    def __init__(self, name: str):
        super().__init__(f"Unknown party: '{name}'")
        self.name = name


class StateLookupError(MemberLedgerError):
    pass


class NotFoundError(StateLookupError):
    def __init__(self, linear_id: str):
        super().__init__(f"No unconsumed member with linear id '{linear_id}'")
        self.linear_id = linear_id


class AmbiguousStateError(StateLookupError):
    def __init__(self, linear_id: str, count: int):
        super().__init__(f"{count} unconsumed members share linear id '{linear_id}'")
        self.linear_id = linear_id
        self.count = count


class VerificationRejected(MemberLedgerError):
    """Contract or counterparty policy violation. `reasons` lists each violated rule."""

    def __init__(self, reasons: Iterable[str]):
        self.reasons: List[str] = list(reasons)
        super().__init__("; ".join(self.reasons) or "Verification failed")

    @property
    def reason(self) -> str:
        return str(self)


class CounterpartyAbortError(MemberLedgerError):
    def __init__(self, counterparty: str, reason: str):
        super().__init__(f"Counterparty '{counterparty}' aborted: {reason}")
        self.counterparty = counterparty
        self.reason = reason


class ConflictRejected(MemberLedgerError):
    """The notary saw at least one input already consumed by another transition."""
    retryable = True

    def __init__(self, tx_id: str, conflicts: dict):
        refs = ", ".join(f"{ref} spent by {by}" for ref, by in conflicts.items())
        super().__init__(f"Transition {tx_id} conflicts: {refs}")
        self.tx_id = tx_id
        self.conflicts = conflicts


class FlowTimeoutError(MemberLedgerError, TimeoutError):
    retryable = True

    def __init__(self, what: str, timeout: Optional[float]):
        super().__init__(f"No reply from {what} within {timeout}s")
        self.what = what
        self.timeout = timeout


class FlowException(MemberLedgerError):
    """Protocol fault: no notary, unreachable party, unexpected message."""
