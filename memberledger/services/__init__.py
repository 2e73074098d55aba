"""
In-process stand-ins for the network services a member flow calls into:
identity resolution, vault queries and the notary.
"""

from .identity import IdentityService
from .notary import Notary
from .vault import VaultService

__all__ = ["IdentityService", "Notary", "VaultService"]
