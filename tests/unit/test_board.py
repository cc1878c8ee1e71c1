"""Unit tests for board geometry and move arithmetic."""

import pytest

from game.board import (
    HOME_STRETCH_LENGTH, TOTAL_TRACK_CELLS, Finished, Home, MoveType, Stretch,
    Token, Track, destination, move_type, new_tokens, progress, seat_color,
    start_cell,
)


class TestGeometry:
    """Test track layout constants and helpers."""

    def test_track_has_104_cells(self):
        assert TOTAL_TRACK_CELLS == 104

    def test_start_cell_is_thirteen_per_seat(self):
        assert start_cell(0) == 0
        assert start_cell(1) == 13
        assert start_cell(7) == 91

    def test_progress_wraps_around_the_loop(self):
        """Seat 7 starts at 91, so cell 2 is 15 cells along its lap."""
        assert progress(91, 7) == 0
        assert progress(2, 7) == 15

    def test_seat_colors(self):
        assert seat_color(0)["name"] == "Blue"
        assert seat_color(7)["name"] == "Pink"


class TestDestination:
    """Test where a token lands for a given roll."""

    def test_home_exits_only_on_six(self):
        assert destination(Home(2), 0, 6) == Track(0)
        assert destination(Home(2), 3, 6) == Track(39)
        for roll in range(1, 6):
            assert destination(Home(0), 0, roll) is None

    def test_finished_never_moves(self):
        for roll in range(1, 7):
            assert destination(Finished(), 0, roll) is None

    def test_normal_track_advance(self):
        assert destination(Track(10), 0, 4) == Track(14)

    def test_track_wraps_for_later_seats(self):
        """Seat 7 passes cell 103 and continues at 0."""
        assert destination(Track(102), 7, 3) == Track(1)

    def test_track_into_home_stretch(self):
        """Progress 101 + 5 = 106 lands on stretch slot 2."""
        assert destination(Track(101), 0, 5) == Stretch(2)

    def test_track_exactly_onto_stretch_start(self):
        assert destination(Track(100), 0, 4) == Stretch(0)

    def test_track_exact_roll_finishes(self):
        assert destination(Track(102), 0, 6) == Finished()

    def test_track_overshoot_is_illegal(self):
        """Progress 103 + 6 = 109 would be stretch slot 5."""
        assert destination(Track(103), 0, 6) is None

    def test_stretch_exact_roll_finishes(self):
        assert destination(Stretch(3), 0, 1) == Finished()

    def test_stretch_overshoot_is_illegal(self):
        assert destination(Stretch(3), 0, 2) is None

    def test_stretch_advance(self):
        assert destination(Stretch(0), 0, 3) == Stretch(3)

    def test_never_overshoots_finished(self):
        """No roll from any position ends beyond the center."""
        positions = (
            [Home(0), Finished()]
            + [Stretch(s) for s in range(HOME_STRETCH_LENGTH)]
            + [Track(c) for c in range(TOTAL_TRACK_CELLS)]
        )
        for color_index in range(8):
            for position in positions:
                for roll in range(1, 7):
                    target = destination(position, color_index, roll)
                    if isinstance(position, Stretch):
                        assert (target is None) == (roll > HOME_STRETCH_LENGTH - position.slot)
                    if isinstance(position, Track):
                        overshoot = progress(position.cell, color_index) + roll - TOTAL_TRACK_CELLS
                        assert (target is None) == (overshoot > HOME_STRETCH_LENGTH)

    def test_finishing_requires_exact_distance(self):
        for color_index in range(8):
            for cell in range(TOTAL_TRACK_CELLS):
                for roll in range(1, 7):
                    target = destination(Track(cell), color_index, roll)
                    reached = progress(cell, color_index) + roll
                    assert isinstance(target, Finished) == (reached == TOTAL_TRACK_CELLS + HOME_STRETCH_LENGTH)


class TestToken:
    """Test token state and serialization."""

    def test_new_tokens_start_home_in_their_slot(self):
        tokens = new_tokens()
        assert [t.position for t in tokens] == [Home(0), Home(1), Home(2), Home(3)]

    def test_send_home_restores_slot(self):
        token = Token(token_id=2, position=Track(40))
        token.send_home()
        assert token.position == Home(2)

    @pytest.mark.parametrize("position,wire", [
        (Track(0), 0),
        (Track(57), 57),
        (Stretch(2), "home_stretch_2"),
        (Finished(), "finished"),
    ])
    def test_wire_position(self, position, wire):
        assert Token(token_id=0, position=position).to_dict()["position"] == wire

    def test_home_wire_includes_slot(self):
        assert Token(token_id=3).to_dict() == {"id": 3, "position": "home", "homePosition": 3}

    def test_move_type(self):
        assert move_type(Home(0)) == MoveType.EXIT_HOME
        assert move_type(Track(5)) == MoveType.MOVE
