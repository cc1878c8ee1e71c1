# server/events.py
"""Event types fired by server timers."""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Optional


class GameEventType(Enum):
    """All timer-driven events."""

    # Gameplay
    TURN_TIMEOUT = auto()

    # Connection lifecycle
    RECONNECT_GRACE_EXPIRED = auto()


@dataclass
class GameEvent:
    """An event that triggers a state transition."""

    type: GameEventType
    data: Dict[str, Any] = field(default_factory=dict)
    player_id: Optional[str] = None
