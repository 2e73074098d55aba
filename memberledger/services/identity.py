# memberledger/services/identity.py
from typing import Dict, List, Optional

from memberledger.core.types import Party
from memberledger.errors import IdentityResolutionError


class IdentityService:
    """Network map: well-known party names and keys. Read-only once populated."""

    def __init__(self, parties: Optional[List[Party]] = None):
        self._by_name: Dict[str, Party] = {}
        self._by_key: Dict[str, Party] = {}
        for party in parties or []:
            self.register(party)

    def register(self, party: Party) -> None:
        existing = self._by_name.get(party.name)
        if existing is not None and existing != party:
            raise ValueError(f"Party name '{party.name}' already registered with a different key")
        self._by_name[party.name] = party
        self._by_key[party.public_key] = party

    def resolve(self, name: str) -> Party:
        party = self._by_name.get(name.strip()) if name else None
        if party is None:
            raise IdentityResolutionError(name)
        return party

    def well_known_party_from_key(self, public_key: str) -> Optional[Party]:
        return self._by_key.get(public_key)

    def well_known_party(self, party: Party) -> Optional[Party]:
        """Map a party seen inside a transition onto the registered identity owning its key."""
        return self.well_known_party_from_key(party.public_key)
