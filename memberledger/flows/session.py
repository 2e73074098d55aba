# memberledger/flows/session.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple, Type, Union

from memberledger.core.types import FinalityReceipt, Party, SignedTransition
from memberledger.errors import CounterpartyAbortError, FlowException, FlowTimeoutError
from memberledger.services.identity import IdentityService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionReject:
    """Sent by a responder that refuses to go on."""
    reason: str


@dataclass(frozen=True)
class Aborted:
    """Sent by an initiator that gave up after its counterparties were contacted."""
    reason: str


@dataclass(frozen=True)
class Finalised:
    stx: SignedTransition
    receipt: FinalityReceipt


class FlowSession:
    """
    One end of a one-to-one request/reply channel between two flows.
    receive() suspends until the peer sends, bounded by `timeout` seconds.
    """

    def __init__(self, local: Party, counterparty: Party, timeout: Optional[float]):
        self.local = local
        self.counterparty = counterparty
        self.timeout = timeout
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._peer: Optional["FlowSession"] = None

    @classmethod
    def pair(
        cls, a: Party, b: Party, a_timeout: Optional[float], b_timeout: Optional[float]
    ) -> Tuple["FlowSession", "FlowSession"]:
        ours = cls(a, b, a_timeout)
        theirs = cls(b, a, b_timeout)
        ours._peer, theirs._peer = theirs, ours
        return ours, theirs

    def send(self, payload: Any) -> None:
        if self._peer is None:
            raise FlowException(f"Session with {self.counterparty} is not connected")
        self._peer._inbox.put_nowait(payload)

    async def receive(self, expected: Union[Type, Tuple[Type, ...]]) -> Any:
        try:
            message = await asyncio.wait_for(self._inbox.get(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise FlowTimeoutError(f"party '{self.counterparty}'", self.timeout) from None

        if isinstance(message, SessionReject):
            raise CounterpartyAbortError(self.counterparty.name, message.reason)
        if not isinstance(message, expected):
            raise FlowException(
                f"Unexpected {type(message).__name__} from {self.counterparty}, expected {expected}"
            )
        return message


@dataclass
class ResponderOutcome:
    flow_name: str
    party: str
    counterparty: str
    result: Optional[SignedTransition] = None
    error: Optional[Exception] = None


class InProcessNetwork:
    """
    Routes sessions between nodes living in one event loop.
    Each inbound session runs the counterparty's registered responder as its own task.
    """

    def __init__(self, identity: Optional[IdentityService] = None):
        self.identity = identity or IdentityService()
        self.nodes: Dict[str, Any] = {}
        self.notaries: List[Any] = []
        self.outcomes: List[ResponderOutcome] = []
        self._tasks: Set[asyncio.Task] = set()

    def add_node(self, node) -> None:
        self.identity.register(node.party)
        self.nodes[node.party.name] = node

    def add_notary(self, notary) -> None:
        self.identity.register(notary.party)
        self.notaries.append(notary)

    @property
    def notary(self):
        return self.notaries[0] if self.notaries else None

    def initiate_flow(self, initiator, counterparty: Party, flow_name: str) -> FlowSession:
        node = self.nodes.get(counterparty.name)
        if node is None or node.party != counterparty:
            raise FlowException(f"Counterparty '{counterparty}' is not reachable")
        responder = node.responder_for(flow_name)
        if responder is None:
            raise FlowException(f"'{counterparty}' has no responder for {flow_name}")

        ours, theirs = FlowSession.pair(
            initiator.party, counterparty,
            initiator.config.session_timeout, node.config.session_timeout,
        )
        task = asyncio.create_task(
            self._run(node, responder, theirs, flow_name),
            name=f"{flow_name}:{counterparty.name}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return ours

    async def _run(self, node, responder, session: FlowSession, flow_name: str) -> None:
        outcome = ResponderOutcome(flow_name, node.party.name, session.counterparty.name)
        outcome.result, outcome.error = await node.run_responder(responder, session)
        self.outcomes.append(outcome)

    async def join(self) -> List[ResponderOutcome]:
        """Wait until every responder task spawned so far (and any they spawn) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
        return list(self.outcomes)
