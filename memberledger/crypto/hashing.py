# memberledger/crypto/hashing.py
import hashlib

from memberledger.core.canon import canonical_json


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def transition_hash(tx) -> str:
    """Id of a Transition: hex(sha256) over its canonical JSON. Signatures are not part of it."""
    return sha256_hex(canonical_json(tx.to_dict()))
