"""Board geometry and movement rules for eight-seat AshtaPashaka.

The shared track has 13 cells per seat (104 in total). Each player enters the
track at ``color_index * 13``, travels one full lap and then walks a private
four-cell home stretch. Finishing requires an exact roll.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union


CELLS_PER_PLAYER = 13
MAX_SEATS = 8
TOTAL_TRACK_CELLS = CELLS_PER_PLAYER * MAX_SEATS  # 104
HOME_STRETCH_LENGTH = 4
TOKENS_PER_PLAYER = 4
EXIT_ROLL = 6

# Seat colors, indexed by color_index
PLAYER_COLORS = [
    {"name": "Blue", "hex": "#3B82F6"},
    {"name": "Red", "hex": "#EF4444"},
    {"name": "Purple", "hex": "#8B5CF6"},
    {"name": "Green", "hex": "#22C55E"},
    {"name": "Yellow", "hex": "#EAB308"},
    {"name": "Black", "hex": "#1F2937"},
    {"name": "Orange", "hex": "#F97316"},
    {"name": "Pink", "hex": "#EC4899"},
]


def seat_color(color_index: int) -> Dict[str, str]:
    """Get the color record for a seat."""
    return dict(PLAYER_COLORS[color_index % len(PLAYER_COLORS)])


def start_cell(color_index: int) -> int:
    """Track cell where a seat's tokens enter the board."""
    return (color_index * CELLS_PER_PLAYER) % TOTAL_TRACK_CELLS


# --- Positions ---

@dataclass(frozen=True)
class Home:
    """Token waiting in its home yard."""
    slot: int

    def to_wire(self) -> Union[str, int]:
        return "home"


@dataclass(frozen=True)
class Track:
    """Token on a shared track cell."""
    cell: int

    def to_wire(self) -> Union[str, int]:
        return self.cell


@dataclass(frozen=True)
class Stretch:
    """Token on its owner's private home stretch."""
    slot: int

    def to_wire(self) -> Union[str, int]:
        return f"home_stretch_{self.slot}"


@dataclass(frozen=True)
class Finished:
    """Token that has reached the center."""

    def to_wire(self) -> Union[str, int]:
        return "finished"


Position = Union[Home, Track, Stretch, Finished]


class MoveType(Enum):
    """Kind of legal move offered to a player."""
    EXIT_HOME = "EXIT_HOME"
    MOVE = "MOVE"


@dataclass
class Token:
    """One of a player's four pieces."""

    token_id: int
    position: Optional[Position] = None

    def __post_init__(self):
        if self.position is None:
            self.position = Home(self.token_id)

    @property
    def home_slot(self) -> int:
        return self.token_id

    @property
    def is_finished(self) -> bool:
        return isinstance(self.position, Finished)

    def send_home(self) -> None:
        self.position = Home(self.home_slot)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.token_id,
            "position": self.position.to_wire(),
        }
        if isinstance(self.position, Home):
            data["homePosition"] = self.position.slot
        return data


def new_tokens() -> List[Token]:
    """Create a full set of tokens, all at home."""
    return [Token(token_id=i) for i in range(TOKENS_PER_PLAYER)]


def progress(cell: int, color_index: int) -> int:
    """Distance travelled along a seat's own lap, in [0, 104)."""
    return (cell - start_cell(color_index) + TOTAL_TRACK_CELLS) % TOTAL_TRACK_CELLS


def destination(position: Position, color_index: int, dice_value: int) -> Optional[Position]:
    """Compute where a token would land, or None if the move is illegal.

    Exact roll is mandatory: a token never moves past ``Finished``.
    """
    if isinstance(position, Home):
        if dice_value == EXIT_ROLL:
            return Track(start_cell(color_index))
        return None

    if isinstance(position, Finished):
        return None

    if isinstance(position, Stretch):
        new_slot = position.slot + dice_value
        if new_slot == HOME_STRETCH_LENGTH:
            return Finished()
        if new_slot < HOME_STRETCH_LENGTH:
            return Stretch(new_slot)
        return None

    new_distance = progress(position.cell, color_index) + dice_value
    if new_distance < TOTAL_TRACK_CELLS:
        return Track((position.cell + dice_value) % TOTAL_TRACK_CELLS)

    stretch_slot = new_distance - TOTAL_TRACK_CELLS
    if stretch_slot == HOME_STRETCH_LENGTH:
        return Finished()
    if stretch_slot < HOME_STRETCH_LENGTH:
        return Stretch(stretch_slot)
    return None


def move_type(position: Position) -> MoveType:
    return MoveType.EXIT_HOME if isinstance(position, Home) else MoveType.MOVE
