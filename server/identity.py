"""Network address to player identity mapping.

One address maps to at most one identity. A connection arriving from an
address that is still tracked resumes that identity instead of starting a
new one.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class IdentityBinding:
    """Identity and room currently bound to an address."""
    player_id: str
    room_id: Optional[str] = None
    connected_at: int = field(default_factory=lambda: int(time.time() * 1000))


class IdentityTracker:
    """Tracks which identity (and room) belongs to each client address."""

    def __init__(self):
        self._bindings: Dict[str, IdentityBinding] = {}

    def resolve(self, address: str) -> Optional[IdentityBinding]:
        """Get the binding for an address, or None for a new client."""
        return self._bindings.get(address)

    def bind(self, address: str, player_id: str, room_id: Optional[str] = None) -> IdentityBinding:
        """Bind an address to an identity, replacing any previous binding."""
        binding = IdentityBinding(player_id=player_id, room_id=room_id)
        self._bindings[address] = binding
        return binding

    def rebind_room(self, address: str, room_id: Optional[str]) -> None:
        """Update the room for an address. Unknown addresses are ignored."""
        binding = self._bindings.get(address)
        if binding:
            binding.room_id = room_id

    def release(self, address: str) -> None:
        """Forget an address."""
        self._bindings.pop(address, None)

    def addresses(self) -> List[str]:
        return list(self._bindings.keys())

    def __contains__(self, address: str) -> bool:
        return address in self._bindings

    def __len__(self) -> int:
        return len(self._bindings)
