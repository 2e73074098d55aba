# memberledger/contract/verifier.py
from dataclasses import dataclass
from typing import FrozenSet, List, Optional

from memberledger.core.types import EDIT, ISSUE, Member, Transition
from memberledger.errors import VerificationRejected


@dataclass
class VerificationFailure:
    message: str
    category: str = "general"  # e.g. "command", "inputs", "outputs", "signers", "linear_id"


@dataclass
class VerificationResult:
    is_valid: bool
    message: str = ""
    failures: List[VerificationFailure] = None

    def __post_init__(self):
        if self.failures is None:
            self.failures = []

    @property
    def first_failure(self) -> Optional[VerificationFailure]:
        return self.failures[0] if self.failures else None

    @property
    def reasons(self) -> List[str]:
        return [f.message for f in self.failures]

    def fail(self, message: str, category: str) -> None:
        self.failures.append(VerificationFailure(message, category))
        self.is_valid = False

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            return "Transition is valid ✓"
        lines = [f"Verification FAILED ({len(self.failures)} issues):"]
        for f in self.failures:
            lines.append(f"  • {f.category}: {f.message}")
        return "\n".join(lines)


def keys_from_participants(state: Member) -> FrozenSet[str]:
    return state.participant_keys()


class MemberContract:
    """
    Rules a member transition must satisfy. Pure: no I/O, no clock, no randomness.
    Run by the initiator before signing, by every counterparty on receipt,
    and by the notary before committing.
    """

    def __init__(self, enforce_linear_id: bool = True):
        self.enforce_linear_id = enforce_linear_id

    def verify(self, tx: Transition) -> VerificationResult:
        result = VerificationResult(True)
        handlers = {
            ISSUE: self._verify_issue,
            EDIT: self._verify_edit,
        }
        handler = handlers.get(tx.command.kind)
        if handler is None:
            result.fail("Unrecognised command.", "command")
        else:
            handler(tx, tx.command.signers, result)

        result.message = "Valid transition" if result.is_valid else f"Failed with {len(result.failures)} issues"
        return result

    def require(self, tx: Transition) -> None:
        """Same as verify(), but raises VerificationRejected carrying every reason."""
        result = self.verify(tx)
        if not result:
            raise VerificationRejected(result.reasons)

    def _verify_issue(self, tx: Transition, signers: FrozenSet[str], result: VerificationResult) -> None:
        if tx.inputs:
            result.fail("No inputs should be consumed when issuing a member.", "inputs")
        if not tx.outputs:
            result.fail("At least one output must be produced when issuing a member.", "outputs")
            return
        if len(tx.outputs) != 1:
            result.fail("Only one member can be created at the same time.", "outputs")
            return

        member_out = tx.outputs[0]
        if signers != keys_from_participants(member_out):
            result.fail("All participants must sign together when creating a member.", "signers")

    def _verify_edit(self, tx: Transition, signers: FrozenSet[str], result: VerificationResult) -> None:
        if not tx.inputs:
            result.fail("An existing member must be consumed when editing a member.", "inputs")
        elif len(tx.inputs) != 1:
            result.fail("Only one member can be edited at the same time.", "inputs")
        if len(tx.outputs) != 1:
            result.fail("Exactly one member must be produced when editing a member.", "outputs")
        if not result.is_valid:
            return

        member_in = tx.inputs[0].state
        member_out = tx.outputs[0]
        expected = keys_from_participants(member_in) | keys_from_participants(member_out)
        if signers != expected:
            result.fail("Participants of both the old and the new member must sign when editing.", "signers")

        if self.enforce_linear_id and member_in.linear_id != member_out.linear_id:
            result.fail("The linear id cannot change when editing a member.", "linear_id")
