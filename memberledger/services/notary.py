# memberledger/services/notary.py
import logging
from typing import Dict, Optional

from memberledger.contract.verifier import MemberContract
from memberledger.core.types import FinalityReceipt, Party, SignedTransition, StateRef
from memberledger.crypto.keys import PartyKeyPair
from memberledger.errors import ConflictRejected, VerificationRejected

logger = logging.getLogger(__name__)


class Notary:
    """
    Uniqueness and finality service.

    Orders transitions by the time their inputs are committed: the first
    transition to consume a given StateRef wins, every later one is refused
    with ConflictRejected. Check and commit run without any suspension point
    in between, so concurrent submissions on one event loop cannot interleave.
    """

    def __init__(self, name: str, keypair: PartyKeyPair, contract: MemberContract):
        self.keypair = keypair
        self.party = Party(name=name, public_key=keypair.public_key_b64url())
        self.contract = contract
        self._spent: Dict[StateRef, str] = {}
        self._receipts: Dict[str, FinalityReceipt] = {}

    @property
    def name(self) -> str:
        return self.party.name

    def consumed_by(self, ref: StateRef) -> Optional[str]:
        return self._spent.get(ref)

    async def submit(self, stx: SignedTransition) -> FinalityReceipt:
        """
        Verify a fully signed transition and commit its inputs as spent.
        Raises VerificationRejected or ConflictRejected.
        """
        tx_id = stx.id
        if tx_id in self._receipts:
            return self._receipts[tx_id]

        if stx.tx.notary != self.name:
            raise VerificationRejected([f"Transition names notary '{stx.tx.notary}', not '{self.name}'"])
        self.contract.require(stx.tx)
        stx.verify_signatures()

        conflicts = {}
        for consumed in stx.tx.inputs:
            spent_by = self._spent.get(consumed.ref)
            if spent_by is not None:
                conflicts[consumed.ref] = spent_by
        if conflicts:
            logger.warning("Notary %s refused %s: double spend of %s", self.name, tx_id, list(conflicts))
            raise ConflictRejected(tx_id, conflicts)

        for consumed in stx.tx.inputs:
            self._spent[consumed.ref] = tx_id

        receipt = FinalityReceipt(
            tx_id=tx_id,
            notary=self.name,
            proof=self.keypair.sign_payload(tx_id.encode("ascii"), purpose="notarisation"),
        )
        self._receipts[tx_id] = receipt
        logger.info("Notary %s finalised %s (%d inputs consumed)", self.name, tx_id, len(stx.tx.inputs))
        return receipt

    @staticmethod
    def verify_receipt(receipt: FinalityReceipt, notary: Party, tx_id: str) -> bool:
        if receipt.tx_id != tx_id or receipt.notary != notary.name:
            return False
        try:
            verifier = PartyKeyPair.from_public_b64url(notary.public_key)
        except ValueError:
            return False
        return verifier.verify_proof(receipt.proof, tx_id.encode("ascii"))
