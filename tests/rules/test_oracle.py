"""Unit tests for matchsync/rules/oracle.py"""

import pytest

from matchsync.core.exceptions import IllegalMoveError, InvalidNotationError
from matchsync.core.notation import STARTING_FEN
from matchsync.core.shared_types import Color
from matchsync.rules.oracle import ChessLibOracle, TerminalState

# White pawn on b7, ready to promote (with or without capturing the rook on a8)
PROMOTION_FEN = "r6k/1P6/8/8/8/8/8/4K3 w - - 0 1"
# Black to move, Qh4 is mate (fool's mate)
FOOLS_MATE_FEN = "rnbqkbnr/pppp1ppp/8/4p3/6P1/5P2/PPPPP2P/RNBQKBNR b KQkq - 0 2"
# Black to move, Qf4-f2 stalemates the white king on h1
STALEMATE_FEN = "k7/8/8/8/5q2/8/8/7K b - - 0 1"


def test_legal_targets_of_a_pawn(oracle: ChessLibOracle) -> None:
    assert sorted(oracle.legal_targets(STARTING_FEN, "e2")) == ["e3", "e4"]


def test_legal_targets_of_a_knight(oracle: ChessLibOracle) -> None:
    assert sorted(oracle.legal_targets(STARTING_FEN, "g1")) == ["f3", "h3"]


def test_no_targets(oracle: ChessLibOracle) -> None:
    """Blocked piece, empty square, and the opponent's piece: nothing to move."""
    assert oracle.legal_targets(STARTING_FEN, "a1") == []
    assert oracle.legal_targets(STARTING_FEN, "e4") == []
    assert oracle.legal_targets(STARTING_FEN, "e7") == []


def test_promotion_targets_are_listed_once(oracle: ChessLibOracle) -> None:
    targets = oracle.legal_targets(PROMOTION_FEN, "b7")
    assert sorted(targets) == ["a8", "b8"]


def test_piece_color_at(oracle: ChessLibOracle) -> None:
    assert oracle.piece_color_at(STARTING_FEN, "e2") == Color.WHITE
    assert oracle.piece_color_at(STARTING_FEN, "d8") == Color.BLACK
    assert oracle.piece_color_at(STARTING_FEN, "e4") is None


def test_needs_promotion(oracle: ChessLibOracle) -> None:
    assert oracle.needs_promotion(PROMOTION_FEN, "b7", "b8")
    assert oracle.needs_promotion(PROMOTION_FEN, "b7", "a8")
    assert not oracle.needs_promotion(STARTING_FEN, "e2", "e4")
    assert not oracle.needs_promotion(PROMOTION_FEN, "e1", "e2")


def test_apply_a_move(oracle: ChessLibOracle) -> None:
    result = oracle.apply(STARTING_FEN, "e2", "e4")
    assert result.position.startswith("rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b")
    assert result.terminal_state is None


def test_apply_a_promotion(oracle: ChessLibOracle) -> None:
    result = oracle.apply(PROMOTION_FEN, "b7", "b8", "Q")
    assert result.position.startswith("rQ5k/8/")


@pytest.mark.parametrize(
    "from_square, to_square, promotion",
    [
        ("e2", "e5", None),  # too far
        ("e7", "e5", None),  # not white's piece
        ("b7", "b8", None),  # promotion piece missing
        ("b7", "b8", "k"),  # cannot promote to a king
    ],
)
def test_apply_illegal(
    oracle: ChessLibOracle, from_square: str, to_square: str, promotion: str | None
) -> None:
    fen = PROMOTION_FEN if from_square == "b7" else STARTING_FEN
    with pytest.raises(IllegalMoveError):
        oracle.apply(fen, from_square, to_square, promotion)


def test_checkmate(oracle: ChessLibOracle) -> None:
    result = oracle.apply(FOOLS_MATE_FEN, "d8", "h4")
    assert result.terminal_state == TerminalState.CHECKMATE


def test_stalemate(oracle: ChessLibOracle) -> None:
    result = oracle.apply(STALEMATE_FEN, "f4", "f2")
    assert result.terminal_state == TerminalState.STALEMATE


def test_quiet_move_is_not_terminal(oracle: ChessLibOracle) -> None:
    result = oracle.apply(STALEMATE_FEN, "f4", "f3")
    assert result.terminal_state is None


def test_invalid_input(oracle: ChessLibOracle) -> None:
    with pytest.raises(InvalidNotationError):
        oracle.legal_targets("not a position", "e2")
    with pytest.raises(InvalidNotationError):
        oracle.legal_targets(STARTING_FEN, "z9")
