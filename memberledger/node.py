# memberledger/node.py
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Tuple, Type, Union

from memberledger.config import LedgerConfig
from memberledger.contract.verifier import MemberContract
from memberledger.core.types import MemberModel, Party, SignedTransition, StateAndRef
from memberledger.crypto.keys import PartyKeyPair
from memberledger.errors import FlowException, MemberLedgerError
from memberledger.flows.member import (
    CreateMemberFlow,
    EditMemberFlow,
    FlowLogic,
    MemberResponderFlow,
    ObserverResponderFlow,
)
from memberledger.flows.session import FlowSession, InProcessNetwork, SessionReject
from memberledger.services.identity import IdentityService
from memberledger.services.notary import Notary
from memberledger.services.vault import VaultService
from memberledger.storage import MemoryStorage, StorageBackend

logger = logging.getLogger(__name__)


class Node:
    """
    One party on the network: its signing key, its vault and the responders
    it runs for inbound sessions. issue() and edit() are the submission surface.
    """

    def __init__(
        self,
        name: str,
        network: InProcessNetwork,
        keypair: Optional[PartyKeyPair] = None,
        storage: Optional[StorageBackend] = None,
        config: Optional[LedgerConfig] = None,
        contract: Optional[MemberContract] = None,
    ):
        self.keypair = keypair or PartyKeyPair.generate()
        self.party = Party(name=name, public_key=self.keypair.public_key_b64url())
        self.config = config or LedgerConfig()
        self.contract = contract or MemberContract(enforce_linear_id=self.config.enforce_linear_id)
        self.vault = VaultService(storage or MemoryStorage())
        self.network = network
        self._responders: Dict[str, Type[FlowLogic]] = {
            CreateMemberFlow.flow_name: MemberResponderFlow,
            EditMemberFlow.flow_name: MemberResponderFlow,
            ObserverResponderFlow.flow_name: ObserverResponderFlow,
        }
        network.add_node(self)

    @property
    def identity(self) -> IdentityService:
        return self.network.identity

    @property
    def first_notary(self):
        notary = self.network.notary
        if notary is None:
            raise FlowException("No available notary.")
        return notary

    def register_responder(self, flow_name: str, responder: Type[FlowLogic]) -> None:
        self._responders[flow_name] = responder

    def responder_for(self, flow_name: str) -> Optional[Type[FlowLogic]]:
        return self._responders.get(flow_name)

    def initiate_flow(self, counterparty: Party, flow_name: str) -> FlowSession:
        return self.network.initiate_flow(self, counterparty, flow_name)

    async def run_responder(
        self, responder: Type[FlowLogic], session: FlowSession
    ) -> Tuple[Optional[SignedTransition], Optional[Exception]]:
        flow = responder(self, session)
        try:
            return await flow.call(), None
        except MemberLedgerError as e:
            logger.warning("%s: %s from %s refused: %s", self.party, responder.flow_name, session.counterparty, e)
            session.send(SessionReject(str(e)))
            return None, e

    async def issue(self, member_model: Union[MemberModel, dict]) -> StateAndRef:
        """Create a member. Returns the finalised first version."""
        model = _as_model(member_model)
        stx = await CreateMemberFlow(self, model).call()
        return stx.tx.out_ref(0)

    async def edit(self, linear_id: str, member_model: Union[MemberModel, dict]) -> StateAndRef:
        """Replace the current version of `linear_id`. Returns the finalised new version."""
        model = replace(_as_model(member_model), linear_id=linear_id)
        stx = await EditMemberFlow(self, model).call()
        return stx.tx.out_ref(0)

    def query(self, title: Optional[str] = None, first_name: Optional[str] = None,
              last_name: Optional[str] = None) -> List[StateAndRef]:
        return self.vault.query(title=title, first_name=first_name, last_name=last_name)

    def close(self) -> None:
        self.vault.close()

    def __repr__(self) -> str:
        return f"Node({self.party.name!r})"


def _as_model(member_model: Union[MemberModel, dict]) -> MemberModel:
    if isinstance(member_model, MemberModel):
        return member_model
    return MemberModel.from_dict(member_model)


def create_network(
    party_names: List[str],
    notary_name: str = "O=Notary,L=London,C=GB",
    config: Optional[LedgerConfig] = None,
    storages: Optional[Dict[str, StorageBackend]] = None,
) -> Tuple[InProcessNetwork, Dict[str, Node]]:
    """One notary plus a node per name, sharing one identity service."""
    config = config or LedgerConfig()
    storages = storages or {}
    network = InProcessNetwork()
    network.add_notary(Notary(notary_name, PartyKeyPair.generate(),
                              MemberContract(enforce_linear_id=config.enforce_linear_id)))
    nodes = {
        name: Node(name, network, storage=storages.get(name), config=config)
        for name in party_names
    }
    return network, nodes
