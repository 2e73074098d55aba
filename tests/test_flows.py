# tests/test_flows.py
import asyncio

import pytest

from memberledger.config import LedgerConfig
from memberledger.core.types import MemberModel, SignedTransition
from memberledger.errors import (
    ConflictRejected,
    CounterpartyAbortError,
    FlowException,
    FlowTimeoutError,
    IdentityResolutionError,
    NotFoundError,
    ValidationError,
    VerificationRejected,
)
from memberledger.flows.member import CreateMemberFlow, FlowLogic, MemberResponderFlow
from memberledger.flows.progress import FlowStep
from memberledger.flows.session import Aborted, FlowSession, InProcessNetwork
from memberledger.node import Node, create_network

from conftest import PARTY_A, PARTY_B, PARTY_C, PARTY_D, issue_tx, make_member


def jane(**overrides) -> MemberModel:
    fields = dict(viewer=PARTY_B, title="Mr", first_name="Jane", last_name="Doe")
    fields.update(overrides)
    return MemberModel(**fields)


@pytest.mark.asyncio
async def test_issue_member_signed_by_creator_and_viewer(network, nodes):
    a, b = nodes[PARTY_A], nodes[PARTY_B]

    issued = await a.issue(jane())
    await network.join()

    member = issued.state
    assert member.creator == a.party
    assert member.viewer == b.party
    assert member.participants == [a.party, b.party]

    stored = a.vault.storage.load_transaction(issued.ref.tx_id)
    assert stored.stx.signers == {a.party.public_key, b.party.public_key}
    assert stored.receipt is not None

    assert a.vault.find_unconsumed(member.linear_id) == issued
    assert b.vault.find_unconsumed(member.linear_id) == issued
    assert nodes[PARTY_C].vault.storage.unconsumed(member.linear_id) == []


@pytest.mark.asyncio
async def test_issue_accepts_camel_case_payload(network, nodes):
    issued = await nodes[PARTY_A].issue({"viewer": PARTY_B, "title": "Ms", "firstName": "Ada", "lastName": "Lee"})
    assert issued.state.first_name == "Ada"
    await network.join()


@pytest.mark.asyncio
async def test_empty_first_name_fails_before_identity_resolution(network, nodes, monkeypatch):
    calls = []
    monkeypatch.setattr(network.identity, "resolve", lambda name: calls.append(name))

    with pytest.raises(ValidationError, match="The first name cannot be empty"):
        await nodes[PARTY_A].issue(jane(first_name=""))
    assert calls == []


@pytest.mark.asyncio
async def test_observer_refused_on_issue(network, nodes):
    with pytest.raises(ValidationError, match="observer"):
        await nodes[PARTY_A].issue(jane(observer=PARTY_C))
    assert network.outcomes == []


@pytest.mark.asyncio
async def test_creator_must_be_calling_party(nodes):
    with pytest.raises(ValidationError, match="creator"):
        await nodes[PARTY_A].issue(jane(creator=PARTY_C))


@pytest.mark.asyncio
async def test_unknown_viewer_fails_resolution(nodes):
    with pytest.raises(IdentityResolutionError):
        await nodes[PARTY_A].issue(jane(viewer="O=Nobody,L=Nowhere,C=XX"))


@pytest.mark.asyncio
async def test_issue_then_edit_round_trip(network, nodes):
    a, b = nodes[PARTY_A], nodes[PARTY_B]
    issued = await a.issue(jane())
    edited = await a.edit(issued.state.linear_id, jane(title="Dr", last_name="Smith"))
    await network.join()

    assert edited.state.linear_id == issued.state.linear_id
    assert edited.ref != issued.ref
    assert (edited.state.title, edited.state.last_name) == ("Dr", "Smith")

    for node in (a, b):
        assert node.vault.find_unconsumed(issued.state.linear_id) == edited
        history = node.vault.storage.history(issued.state.linear_id)
        assert [by for _, by in history] == [edited.ref.tx_id, None]

    assert network.notary.consumed_by(issued.ref) == edited.ref.tx_id


@pytest.mark.asyncio
async def test_edit_with_unresolvable_observer_leaves_original(network, nodes):
    a = nodes[PARTY_A]
    issued = await a.issue(jane())
    await network.join()

    with pytest.raises(IdentityResolutionError):
        await a.edit(issued.state.linear_id, jane(observer="O=Ghost,L=Nowhere,C=XX"))

    assert a.vault.find_unconsumed(issued.state.linear_id) == issued
    assert network.notary.consumed_by(issued.ref) is None


@pytest.mark.asyncio
async def test_edit_unknown_or_missing_id(nodes):
    a = nodes[PARTY_A]
    with pytest.raises(NotFoundError):
        await a.edit("0" * 32, jane())
    with pytest.raises(ValidationError, match="Id cannot be null"):
        await a.edit("", jane())


@pytest.mark.asyncio
async def test_edit_sends_copy_to_observer(network, nodes):
    a, c = nodes[PARTY_A], nodes[PARTY_C]
    issued = await a.issue(jane())
    edited = await a.edit(issued.state.linear_id, jane(observer=PARTY_C, title="Dr"))
    outcomes = await network.join()

    assert edited.state.observer == c.party
    assert c.vault.find_unconsumed(issued.state.linear_id) == edited
    assert all(o.error is None for o in outcomes)


@pytest.mark.asyncio
async def test_edit_changing_viewer_needs_old_viewer_too(network, nodes):
    a, b, c = nodes[PARTY_A], nodes[PARTY_B], nodes[PARTY_C]
    issued = await a.issue(jane())
    edited = await a.edit(issued.state.linear_id, jane(viewer=PARTY_C))
    await network.join()

    stored = a.vault.storage.load_transaction(edited.ref.tx_id)
    assert stored.stx.signers == {a.party.public_key, b.party.public_key, c.party.public_key}
    assert c.vault.find_unconsumed(issued.state.linear_id) == edited
    assert b.vault.find_unconsumed(issued.state.linear_id) == edited


@pytest.mark.asyncio
async def test_concurrent_edits_exactly_one_wins(network, nodes):
    a, b = nodes[PARTY_A], nodes[PARTY_B]
    issued = await a.issue(jane())
    await network.join()
    linear_id = issued.state.linear_id

    results = await asyncio.gather(
        a.edit(linear_id, jane(title="Dr")),
        a.edit(linear_id, jane(title="Prof")),
        return_exceptions=True,
    )
    await network.join()

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], ConflictRejected)
    assert losers[0].retryable

    for node in (a, b):
        current = node.vault.storage.unconsumed(linear_id)
        assert current == winners


@pytest.mark.asyncio
async def test_responder_refuses_unauthorised_issuer(network, nodes):
    d = nodes[PARTY_D]
    with pytest.raises(CounterpartyAbortError) as exc:
        await d.issue(jane())
    outcomes = await network.join()

    assert exc.value.counterparty == PARTY_B
    assert "Only PartyA can create the member." in exc.value.reason
    assert isinstance(outcomes[-1].error, VerificationRejected)
    assert d.vault.storage.list_transactions() == []


@pytest.mark.asyncio
async def test_authorised_issuer_is_configurable():
    config = LedgerConfig(authorized_issuer="PartyD", session_timeout=5.0, notary_timeout=5.0)
    network, nodes = create_network([PARTY_A, PARTY_B, PARTY_D], config=config)

    issued = await nodes[PARTY_D].issue(jane())
    await network.join()
    assert issued.state.creator == nodes[PARTY_D].party
    with pytest.raises(CounterpartyAbortError):
        await nodes[PARTY_A].issue(jane())
    await network.join()


def test_responder_rejects_initiator_posing_as_creator(nodes):
    a, b, c = nodes[PARTY_A], nodes[PARTY_B], nodes[PARTY_C]
    # C opens the session but the proposal claims A as creator.
    stx = a.keypair.sign_transition(SignedTransition(issue_tx(make_member(a.party, b.party))))
    _, theirs = FlowSession.pair(c.party, b.party, 1.0, 1.0)
    responder = MemberResponderFlow(b, theirs)

    with pytest.raises(VerificationRejected):
        responder.check_transaction(stx)


def test_responder_requires_initiator_signature(nodes):
    a, b = nodes[PARTY_A], nodes[PARTY_B]
    unsigned = SignedTransition(issue_tx(make_member(a.party, b.party)))
    _, theirs = FlowSession.pair(a.party, b.party, 1.0, 1.0)

    with pytest.raises(VerificationRejected, match="Missing signatures"):
        MemberResponderFlow(b, theirs).check_transaction(unsigned)


class SilentResponder(FlowLogic):
    flow_name = "SilentResponder"

    def __init__(self, node, session):
        super().__init__(node)
        self.session = session

    async def call(self):
        await self.session.receive(SignedTransition)
        await self.session.receive(Aborted)


@pytest.mark.asyncio
async def test_silent_counterparty_times_out():
    network, _ = create_network([], notary_name="O=Notary,L=London,C=GB")
    a = Node(PARTY_A, network, config=LedgerConfig(session_timeout=0.2))
    b = Node(PARTY_B, network, config=LedgerConfig(session_timeout=5.0))
    b.register_responder(CreateMemberFlow.flow_name, SilentResponder)

    with pytest.raises(FlowTimeoutError) as exc:
        await a.issue(jane())
    outcomes = await network.join()

    assert exc.value.retryable
    assert outcomes[0].error is None
    assert a.vault.storage.list_transactions() == []


@pytest.mark.asyncio
async def test_no_notary_available():
    network = InProcessNetwork()
    a = Node(PARTY_A, network)
    Node(PARTY_B, network)
    with pytest.raises(FlowException, match="No available notary."):
        await a.issue(jane())


@pytest.mark.asyncio
async def test_progress_steps_in_order(network, nodes):
    seen = []
    flow = CreateMemberFlow(nodes[PARTY_A], jane())
    flow.progress_tracker.subscribe(seen.append)

    await flow.call()
    await network.join()

    assert seen == [
        FlowStep.INITIALISING,
        FlowStep.BUILDING,
        FlowStep.SIGNING,
        FlowStep.COLLECTING,
        FlowStep.FINALISING,
        FlowStep.DONE,
    ]
    with pytest.raises(RuntimeError):
        flow.progress_tracker.current_step = FlowStep.SIGNING


@pytest.mark.asyncio
async def test_progress_stops_where_flow_failed(nodes):
    flow = CreateMemberFlow(nodes[PARTY_A], jane(title=""))
    with pytest.raises(ValidationError):
        await flow.call()
    assert flow.progress_tracker.history == [FlowStep.INITIALISING]


@pytest.mark.asyncio
async def test_query_current_members_by_name(network, nodes):
    a, b = nodes[PARTY_A], nodes[PARTY_B]
    issued = await a.issue(jane())
    await a.issue(jane(first_name="Johnny", last_name="Walker"))
    await a.edit(issued.state.linear_id, jane(title="Dr"))
    await network.join()

    for node in (a, b):
        found = node.query(first_name="JAN")
        assert [(m.state.title, m.state.last_name) for m in found] == [("Dr", "Doe")]
        assert len(node.query()) == 2
    assert nodes[PARTY_C].query() == []


@pytest.mark.asyncio
async def test_stalled_notary_times_out():
    config = LedgerConfig(session_timeout=5.0, notary_timeout=0.2)
    network, nodes = create_network([PARTY_A, PARTY_B], config=config)

    async def stalled_submit(stx):
        await asyncio.sleep(10)

    network.notary.submit = stalled_submit
    with pytest.raises(FlowTimeoutError, match="notary") as exc:
        await nodes[PARTY_A].issue(jane())
    outcomes = await network.join()

    assert exc.value.retryable
    assert isinstance(outcomes[0].error, FlowException)
    assert "Initiator aborted" in str(outcomes[0].error)
    for node in nodes.values():
        assert node.vault.storage.list_transactions() == []


@pytest.mark.asyncio
async def test_cancelled_initiator_tells_counterparties(network, nodes):
    submitted = asyncio.Event()

    async def stalled_submit(stx):
        submitted.set()
        await asyncio.sleep(10)

    network.notary.submit = stalled_submit
    task = asyncio.create_task(nodes[PARTY_A].issue(jane()))
    await asyncio.wait_for(submitted.wait(), timeout=5.0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    outcomes = await asyncio.wait_for(network.join(), timeout=2.0)

    assert len(outcomes) == 1
    assert isinstance(outcomes[0].error, FlowException)
    assert "Initiator aborted" in str(outcomes[0].error)
    assert nodes[PARTY_B].vault.storage.list_transactions() == []
