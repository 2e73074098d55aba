# memberledger/flows/member.py
"""
Flows that create and edit members.

An initiator builds the transition, signs it, collects a signature from
every other participant, has the notary finalise it and hands the result
to everyone involved. Responders re-check everything they are asked to
sign; nothing the initiator says is taken on trust.
"""
import asyncio
import logging
from dataclasses import replace
from typing import FrozenSet, List, Tuple

from memberledger.core.types import (
    EDIT,
    ISSUE,
    Command,
    FinalityReceipt,
    Member,
    MemberModel,
    Party,
    Proof,
    SignedTransition,
    StateAndRef,
    Transition,
)
from memberledger.crypto.keys import PartyKeyPair
from memberledger.errors import (
    FlowException,
    FlowTimeoutError,
    IdentityResolutionError,
    ValidationError,
    VerificationRejected,
)
from memberledger.services.notary import Notary
from .progress import FlowStep, ProgressTracker
from .session import Aborted, Finalised, FlowSession

logger = logging.getLogger(__name__)


class FlowLogic:
    flow_name = "flow"

    def __init__(self, node):
        self.node = node
        self.progress_tracker = ProgressTracker(self.flow_name)

    @property
    def our_identity(self) -> Party:
        return self.node.party

    @property
    def our_key(self) -> str:
        return self.node.party.public_key

    async def call(self):
        raise NotImplementedError

    def check_finality(self, stx: SignedTransition, receipt: FinalityReceipt) -> None:
        """Receipt must come from a known notary, cover this transition, and every signature must be there."""
        notary = self.node.identity.resolve(receipt.notary)
        if stx.tx.notary != notary.name or not Notary.verify_receipt(receipt, notary, stx.id):
            raise VerificationRejected([f"Invalid finality receipt for {stx.id}"])
        stx.verify_signatures()


class MemberInitiatorFlow(FlowLogic):
    """Shared skeleton of CreateMemberFlow and EditMemberFlow."""

    command_kind = ""

    def __init__(self, node, member_model: MemberModel):
        super().__init__(node)
        self.member_model = member_model

    async def call(self) -> SignedTransition:
        logger.info("%s.memberModel: %s", self.flow_name, self.member_model)
        self.progress_tracker.current_step = FlowStep.INITIALISING
        self.inspect()
        inputs, member = self.prepare()

        self.progress_tracker.current_step = FlowStep.BUILDING
        notary = self.node.first_notary
        signers = member.participant_keys()
        for consumed in inputs:
            signers |= consumed.state.participant_keys()
        tx = Transition(
            inputs=tuple(inputs),
            outputs=(member,),
            command=Command(self.command_kind, signers),
            notary=notary.name,
        )
        self.node.contract.require(tx)

        self.progress_tracker.current_step = FlowStep.SIGNING
        if self.our_key not in signers:
            raise FlowException(f"{self.our_identity} is not a required signer of {tx.id}")
        ptx = self.node.keypair.sign_transition(SignedTransition(tx))

        counterparties = self._counterparties(signers)
        sessions: List[FlowSession] = []
        try:
            self.progress_tracker.current_step = FlowStep.COLLECTING
            for party in counterparties:
                sessions.append(self.node.initiate_flow(party, self.flow_name))
            stx = await self.collect_signatures(ptx, sessions)

            self.progress_tracker.current_step = FlowStep.FINALISING
            receipt = await self.finalise(stx, notary)
        except BaseException as e:
            # Also on cancellation.
            reason = str(e) or type(e).__name__
            logger.warning("%s aborted %s: %s", self.flow_name, tx.id, reason)
            for session in sessions:
                session.send(Aborted(reason))
            raise

        for session in sessions:
            session.send(Finalised(stx, receipt))
        self.report_to_observer(member, Finalised(stx, receipt))

        self.progress_tracker.current_step = FlowStep.DONE
        return stx

    def inspect(self) -> None:
        model = self.member_model
        reasons = []
        if not model.title:
            reasons.append("The title cannot be empty")
        if not model.first_name:
            reasons.append("The first name cannot be empty")
        if not model.last_name:
            reasons.append("The last name cannot be empty")
        if not model.viewer:
            reasons.append("The viewer cannot be empty")
        if model.creator and model.creator != self.our_identity.name:
            reasons.append("The creator must be the party starting the flow")
        if reasons:
            raise ValidationError("; ".join(reasons))

    def prepare(self) -> Tuple[List[StateAndRef], Member]:
        """Resolve identities and look up state. Returns (consumed versions, new version)."""
        raise NotImplementedError

    def _counterparties(self, signers: FrozenSet[str]) -> List[Party]:
        parties = []
        for key in sorted(signers - {self.our_key}):
            party = self.node.identity.well_known_party_from_key(key)
            if party is None:
                raise IdentityResolutionError(key)
            parties.append(party)
        return parties

    async def collect_signatures(self, ptx: SignedTransition, sessions: List[FlowSession]) -> SignedTransition:
        for session in sessions:
            session.send(ptx)

        stx = ptx
        payload = ptx.id.encode("ascii")
        for session in sessions:
            proof = await session.receive(Proof)
            signer = PartyKeyPair.from_public_b64url(session.counterparty.public_key)
            if not signer.verify_proof(proof, payload):
                raise VerificationRejected([f"Invalid signature returned by {session.counterparty}"])
            stx = stx.with_signature(proof)

        stx.verify_signatures()
        return stx

    async def finalise(self, stx: SignedTransition, notary: Notary) -> FinalityReceipt:
        timeout = self.node.config.notary_timeout
        try:
            receipt = await asyncio.wait_for(notary.submit(stx), timeout=timeout)
        except asyncio.TimeoutError:
            raise FlowTimeoutError(f"notary '{notary.name}'", timeout) from None
        self.node.vault.record(stx, receipt)
        logger.info("%s finalised %s", self.flow_name, stx.id)
        return receipt

    def report_to_observer(self, member: Member, message: Finalised) -> None:
        observer = member.observer
        if observer is None or observer in member.participants:
            return
        try:
            session = self.node.initiate_flow(observer, ObserverResponderFlow.flow_name)
        except FlowException as e:
            logger.warning("%s could not reach observer %s: %s", self.flow_name, observer, e)
            return
        session.send(message)


class CreateMemberFlow(MemberInitiatorFlow):
    flow_name = "CreateMember"
    command_kind = ISSUE

    def inspect(self) -> None:
        super().inspect()
        if self.member_model.observer:
            raise ValidationError("An observer can only be named when editing a member")

    def prepare(self) -> Tuple[List[StateAndRef], Member]:
        model = self.member_model
        viewer = self.node.identity.resolve(model.viewer)
        member = Member(
            creator=self.our_identity,
            viewer=viewer,
            title=model.title,
            first_name=model.first_name,
            last_name=model.last_name,
        )
        return [], member


class EditMemberFlow(MemberInitiatorFlow):
    flow_name = "EditMember"
    command_kind = EDIT

    def inspect(self) -> None:
        if not self.member_model.linear_id:
            raise ValidationError("Id cannot be null")
        super().inspect()

    def prepare(self) -> Tuple[List[StateAndRef], Member]:
        model = self.member_model
        viewer = self.node.identity.resolve(model.viewer)
        observer = self.node.identity.resolve(model.observer) if model.observer else None

        existing = self.node.vault.find_unconsumed(model.linear_id)
        member = replace(
            existing.state,
            viewer=viewer,
            observer=observer,
            title=model.title,
            first_name=model.first_name,
            last_name=model.last_name,
        )
        return [existing], member


class MemberResponderFlow(FlowLogic):
    """Counterparty side of CreateMemberFlow / EditMemberFlow."""

    flow_name = "MemberResponder"

    def __init__(self, node, session: FlowSession):
        super().__init__(node)
        self.session = session

    async def call(self) -> SignedTransition:
        stx = await self.session.receive(SignedTransition)
        self.check_transaction(stx)

        proof = self.node.keypair.sign_payload(stx.id.encode("ascii"))
        self.session.send(proof)
        logger.info("%s signed %s for %s", self.our_identity, stx.id, self.session.counterparty)

        message = await self.session.receive((Finalised, Aborted))
        if isinstance(message, Aborted):
            raise FlowException(f"Initiator aborted {stx.id}: {message.reason}")
        if message.stx.id != stx.id:
            raise VerificationRejected([f"Finalised {message.stx.id} is not the transition we signed ({stx.id})"])
        self.check_finality(message.stx, message.receipt)

        self.node.vault.record(message.stx, message.receipt)
        return message.stx

    def check_transaction(self, stx: SignedTransition) -> None:
        if self.our_key not in stx.tx.required_signers:
            raise VerificationRejected([f"{self.our_identity} is not a required signer"])
        # Only the initiator's signature may be present, and it must be.
        stx.verify_signatures(allowed_missing=stx.tx.required_signers - {self.session.counterparty.public_key})
        self.node.contract.require(stx.tx)

        members = stx.tx.outputs
        reasons = []
        if not members:
            reasons.append("Member in transaction must not be empty.")
        issuer = self.node.config.authorized_issuer
        for member in members:
            creator = self.node.identity.well_known_party(member.creator)
            if creator is None or creator.organisation != issuer:
                reasons.append(f"Only {issuer} can create the member.")
            if creator != self.session.counterparty:
                reasons.append("The initiator must be the creator of the state.")
        if reasons:
            raise VerificationRejected(reasons)


class ObserverResponderFlow(FlowLogic):
    """Records a finalised member transition sent to a non-participant observer."""

    flow_name = "ObserveMember"

    def __init__(self, node, session: FlowSession):
        super().__init__(node)
        self.session = session

    async def call(self) -> SignedTransition:
        message = await self.session.receive(Finalised)
        stx = message.stx
        if not any(m.observer is not None and m.observer.public_key == self.our_key for m in stx.tx.outputs):
            raise VerificationRejected([f"{self.our_identity} is not an observer of {stx.id}"])
        self.node.contract.require(stx.tx)
        self.check_finality(stx, message.receipt)
        self.node.vault.record(stx, message.receipt)
        return stx
