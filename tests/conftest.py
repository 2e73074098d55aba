# tests/conftest.py
import pytest

from memberledger.config import LedgerConfig
from memberledger.contract.verifier import MemberContract
from memberledger.core.types import Command, Member, Party, SignedTransition, StateAndRef, StateRef, Transition
from memberledger.crypto.keys import PartyKeyPair
from memberledger.node import create_network
from memberledger.services.notary import Notary

PARTY_A = "O=PartyA,L=London,C=GB"
PARTY_B = "O=PartyB,L=New York,C=US"
PARTY_C = "O=PartyC,L=Paris,C=FR"
PARTY_D = "O=PartyD,L=Berlin,C=DE"
NOTARY = "O=Notary,L=London,C=GB"


class Signer:
    """Key pair + party for building transitions by hand."""

    def __init__(self, name: str):
        self.keys = PartyKeyPair.generate()
        self.party = Party(name=name, public_key=self.keys.public_key_b64url())

    @property
    def key(self) -> str:
        return self.party.public_key


@pytest.fixture
def alice() -> Signer:
    return Signer(PARTY_A)


@pytest.fixture
def bob() -> Signer:
    return Signer(PARTY_B)


@pytest.fixture
def carol() -> Signer:
    return Signer(PARTY_C)


@pytest.fixture
def contract() -> MemberContract:
    return MemberContract()


@pytest.fixture
def notary(contract) -> Notary:
    return Notary(NOTARY, PartyKeyPair.generate(), contract)


def make_member(creator: Party, viewer: Party, **overrides) -> Member:
    fields = dict(creator=creator, viewer=viewer, title="Mr", first_name="John", last_name="Smith")
    fields.update(overrides)
    return Member(**fields)


def issue_tx(member: Member, signers=None, notary: str = NOTARY) -> Transition:
    keys = member.participant_keys() if signers is None else signers
    return Transition(inputs=(), outputs=(member,), command=Command.issue(keys), notary=notary)


def edit_tx(previous: StateAndRef, member: Member, signers=None, notary: str = NOTARY) -> Transition:
    if signers is None:
        signers = previous.state.participant_keys() | member.participant_keys()
    return Transition(inputs=(previous,), outputs=(member,), command=Command.edit(signers), notary=notary)


def sign_all(tx: Transition, *signers: Signer) -> SignedTransition:
    stx = SignedTransition(tx)
    for signer in signers:
        stx = signer.keys.sign_transition(stx)
    return stx


def fake_ref(n: int = 0) -> StateRef:
    return StateRef(tx_id=f"{n:064x}", index=0)


@pytest.fixture
def ledger_config() -> LedgerConfig:
    return LedgerConfig(session_timeout=5.0, notary_timeout=5.0)


@pytest.fixture
def network_and_nodes(ledger_config):
    return create_network([PARTY_A, PARTY_B, PARTY_C, PARTY_D], notary_name=NOTARY, config=ledger_config)


@pytest.fixture
def network(network_and_nodes):
    return network_and_nodes[0]


@pytest.fixture
def nodes(network_and_nodes):
    return network_and_nodes[1]
