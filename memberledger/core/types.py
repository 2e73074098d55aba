# memberledger/core/types.py
from dataclasses import dataclass, field, asdict, replace
from typing import Any, Dict, FrozenSet, List, Optional, Tuple
from uuid import uuid4

ISSUE = "Issue"
EDIT = "Edit"


@dataclass(frozen=True)
class Proof:
    """W3C Data Integrity style signature proof (minimal version)."""
    type: str = "Ed25519Signature2020"
    created: str = ""
    verification_method: str = ""           # base64url public key of the signer
    proof_purpose: str = "assertionMethod"
    proof_value: str = ""                   # base64url encoded Ed25519 sig

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Proof":
        return cls(**d)


@dataclass(frozen=True)
class Party:
    """A well-known identity on the network: X.500-style name + signing key."""
    name: str
    public_key: str

    @property
    def organisation(self) -> str:
        for part in self.name.split(","):
            key, sep, value = part.strip().partition("=")
            if sep and key.strip().upper() == "O":
                return value.strip()
        return self.name

    def to_dict(self) -> dict:
        return {"name": self.name, "public_key": self.public_key}

    @classmethod
    def from_dict(cls, d: dict) -> "Party":
        return cls(name=d["name"], public_key=d["public_key"])

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Member:
    """One immutable version of a member record."""
    creator: Party
    viewer: Party
    title: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    observer: Optional[Party] = None
    linear_id: str = field(default_factory=lambda: uuid4().hex)

    @property
    def participants(self) -> List[Party]:
        return [self.creator, self.viewer]

    def participant_keys(self) -> FrozenSet[str]:
        return frozenset(p.public_key for p in self.participants)

    def to_dict(self) -> dict:
        return {
            "creator": self.creator.to_dict(),
            "viewer": self.viewer.to_dict(),
            "observer": self.observer.to_dict() if self.observer else None,
            "title": self.title,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "linear_id": self.linear_id,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Member":
        return cls(
            creator=Party.from_dict(d["creator"]),
            viewer=Party.from_dict(d["viewer"]),
            observer=Party.from_dict(d["observer"]) if d.get("observer") else None,
            title=d.get("title"),
            first_name=d.get("first_name"),
            last_name=d.get("last_name"),
            linear_id=d["linear_id"],
        )


@dataclass(frozen=True)
class StateRef:
    """Identity of one version: the transition that produced it + output index."""
    tx_id: str
    index: int

    def to_dict(self) -> dict:
        return {"tx_id": self.tx_id, "index": self.index}

    @classmethod
    def from_dict(cls, d: dict) -> "StateRef":
        return cls(tx_id=d["tx_id"], index=int(d["index"]))

    def __str__(self) -> str:
        return f"{self.tx_id}({self.index})"


@dataclass(frozen=True)
class StateAndRef:
    state: Member
    ref: StateRef

    def to_dict(self) -> dict:
        return {"state": self.state.to_dict(), "ref": self.ref.to_dict()}

    @classmethod
    def from_dict(cls, d: dict) -> "StateAndRef":
        return cls(state=Member.from_dict(d["state"]), ref=StateRef.from_dict(d["ref"]))


@dataclass(frozen=True)
class Command:
    """Authorising command. `kind` is Issue or Edit on well-formed transitions."""
    kind: str
    signers: FrozenSet[str]

    @classmethod
    def issue(cls, signers) -> "Command":
        return cls(ISSUE, frozenset(signers))

    @classmethod
    def edit(cls, signers) -> "Command":
        return cls(EDIT, frozenset(signers))

    def to_dict(self) -> dict:
        return {"kind": self.kind, "signers": sorted(self.signers)}

    @classmethod
    def from_dict(cls, d: dict) -> "Command":
        return cls(kind=d["kind"], signers=frozenset(d["signers"]))


@dataclass(frozen=True)
class Transition:
    """Candidate transaction: consumed versions, produced versions, one command."""
    inputs: Tuple[StateAndRef, ...]
    outputs: Tuple[Member, ...]
    command: Command
    notary: str
    salt: str = field(default_factory=lambda: uuid4().hex)

    @property
    def id(self) -> str:
        from memberledger.crypto.hashing import transition_hash
        return transition_hash(self)

    @property
    def required_signers(self) -> FrozenSet[str]:
        return self.command.signers

    def out_ref(self, index: int) -> StateAndRef:
        return StateAndRef(self.outputs[index], StateRef(self.id, index))

    def to_dict(self) -> dict:
        return {
            "inputs": [i.to_dict() for i in self.inputs],
            "outputs": [o.to_dict() for o in self.outputs],
            "command": self.command.to_dict(),
            "notary": self.notary,
            "salt": self.salt,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Transition":
        return cls(
            inputs=tuple(StateAndRef.from_dict(i) for i in d["inputs"]),
            outputs=tuple(Member.from_dict(o) for o in d["outputs"]),
            command=Command.from_dict(d["command"]),
            notary=d["notary"],
            salt=d["salt"],
        )


@dataclass(frozen=True)
class SignedTransition:
    """A Transition together with the signatures collected so far."""
    tx: Transition
    sigs: Tuple[Proof, ...] = ()

    @property
    def id(self) -> str:
        return self.tx.id

    @property
    def signers(self) -> FrozenSet[str]:
        return frozenset(p.verification_method for p in self.sigs)

    def with_signature(self, proof: Proof) -> "SignedTransition":
        if proof.verification_method in self.signers:
            return self
        return replace(self, sigs=self.sigs + (proof,))

    def missing_signers(self) -> FrozenSet[str]:
        return self.tx.required_signers - self.signers

    def verify_signatures(self, allowed_missing: FrozenSet[str] = frozenset()) -> None:
        """
        Check every attached proof against the transition id and that all
        required keys have signed, except `allowed_missing`.
        Raises VerificationRejected.
        """
        from memberledger.crypto.keys import PartyKeyPair
        from memberledger.errors import VerificationRejected

        payload = self.id.encode("ascii")
        for proof in self.sigs:
            if proof.verification_method not in self.tx.required_signers:
                raise VerificationRejected([f"Unexpected signature from key {proof.verification_method}"])
            try:
                verifier = PartyKeyPair.from_public_b64url(proof.verification_method)
                valid = verifier.verify_proof(proof, payload)
            except ValueError as e:
                raise VerificationRejected([f"Key loading failed: {e}"]) from e
            if not valid:
                raise VerificationRejected([f"Invalid signature from key {proof.verification_method}"])

        missing = self.missing_signers() - allowed_missing
        if missing:
            raise VerificationRejected([f"Missing signatures from keys: {', '.join(sorted(missing))}"])

    def to_dict(self) -> dict:
        return {"tx": self.tx.to_dict(), "sigs": [p.to_dict() for p in self.sigs]}

    @classmethod
    def from_dict(cls, d: dict) -> "SignedTransition":
        return cls(
            tx=Transition.from_dict(d["tx"]),
            sigs=tuple(Proof.from_dict(p) for p in d["sigs"]),
        )


@dataclass(frozen=True)
class FinalityReceipt:
    """Notary attestation that a transition has been globally ordered."""
    tx_id: str
    notary: str
    proof: Proof

    def to_dict(self) -> dict:
        return {"tx_id": self.tx_id, "notary": self.notary, "proof": self.proof.to_dict()}

    @classmethod
    def from_dict(cls, d: dict) -> "FinalityReceipt":
        return cls(tx_id=d["tx_id"], notary=d["notary"], proof=Proof.from_dict(d["proof"]))


_MODEL_ALIASES = {
    "firstName": "first_name",
    "lastName": "last_name",
    "linearId": "linear_id",
}


@dataclass(frozen=True)
class MemberModel:
    """Caller payload for issue / edit. Party fields are names to resolve."""
    creator: Optional[str] = None
    viewer: Optional[str] = None
    observer: Optional[str] = None
    title: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    linear_id: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MemberModel":
        """Accepts snake_case or camelCase keys; unknown keys are ignored."""
        known = set(cls.__dataclass_fields__)
        kwargs = {}
        for key, value in d.items():
            key = _MODEL_ALIASES.get(key, key)
            if key in known:
                kwargs[key] = value
        return cls(**kwargs)

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}
