# memberledger/crypto/keys.py
from datetime import datetime, timezone
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from memberledger.core.canon import b64url_decode, b64url_encode
from memberledger.core.types import Proof


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


class PartyKeyPair:
    """
    Ed25519 signing identity of a network party.
    A verify-only instance (no private key) is built from a published public key.
    """

    def __init__(self, public_key: Ed25519PublicKey, private_key: Optional[Ed25519PrivateKey] = None):
        self._public_key = public_key
        self._private_key = private_key

    @classmethod
    def generate(cls) -> "PartyKeyPair":
        private_key = Ed25519PrivateKey.generate()
        return cls(private_key.public_key(), private_key)

    @classmethod
    def from_public_b64url(cls, public_b64: str) -> "PartyKeyPair":
        return cls(Ed25519PublicKey.from_public_bytes(b64url_decode(public_b64)))

    @property
    def can_sign(self) -> bool:
        return self._private_key is not None

    def public_key_b64url(self) -> str:
        raw = self._public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return b64url_encode(raw)

    def sign_bytes(self, data: bytes) -> bytes:
        if self._private_key is None:
            raise ValueError("Key pair has no private key; cannot sign")
        return self._private_key.sign(data)

    def verify_bytes(self, signature: bytes, data: bytes) -> bool:
        try:
            self._public_key.verify(signature, data)
        except InvalidSignature:
            return False
        return True

    def sign_payload(self, data: bytes, purpose: str = "assertionMethod") -> Proof:
        return Proof(
            created=utc_now(),
            verification_method=self.public_key_b64url(),
            proof_purpose=purpose,
            proof_value=b64url_encode(self.sign_bytes(data)),
        )

    def verify_proof(self, proof: Proof, data: bytes) -> bool:
        if proof.verification_method != self.public_key_b64url():
            return False
        try:
            signature = b64url_decode(proof.proof_value)
        except ValueError:
            return False
        return self.verify_bytes(signature, data)

    def sign_transition(self, stx):
        """Add this key's signature over the transition id. Returns a new SignedTransition."""
        proof = self.sign_payload(stx.id.encode("ascii"))
        return stx.with_signature(proof)
