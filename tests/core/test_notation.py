"""Unit tests for matchsync/core/notation.py"""

import pytest

from matchsync.core.exceptions import InvalidNotationError
from matchsync.core.notation import (
    STARTING_FEN,
    build_uci,
    is_valid_fen,
    is_valid_square,
    side_to_move,
    split_uci,
)
from matchsync.core.shared_types import Color


# --- SQUARES ---
@pytest.mark.parametrize("square", ["a1", "e4", "h8"])
def test_valid_square(square: str) -> None:
    assert is_valid_square(square)


@pytest.mark.parametrize(
    "square",
    [
        "nonsense",  # anything more than two characters.
        "11",  # First character is not a letter
        "aa",  # second character is not a number
        "i1",  # file outside of the board
        "a9",  # rank outside of the board
        "a0",
        "e²",  # unicode digit that int() cannot read
        "e٣",  # arabic-indic three
        "",
    ],
)
def test_invalid_square(square: str) -> None:
    assert not is_valid_square(square)


# --- POSITIONS ---
def test_starting_position_is_valid() -> None:
    assert is_valid_fen(STARTING_FEN)


@pytest.mark.parametrize(
    "invalid_fen",
    [
        "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0",  # only 5 space-separated values
        "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1 extra",  # too many space-separated values
        "rnbqkbnr/pppppppp/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1",  # 7 ranks
        "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR x KQkq - 0 1",  # unknown active color
        "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - zero 1",  # counter is not a number
    ],
)
def test_invalid_fen(invalid_fen: str) -> None:
    assert not is_valid_fen(invalid_fen)


def test_side_to_move() -> None:
    assert side_to_move(STARTING_FEN) == Color.WHITE
    assert (
        side_to_move("rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1")
        == Color.BLACK
    )


def test_side_to_move_of_garbage() -> None:
    with pytest.raises(InvalidNotationError):
        side_to_move("not a position")


# --- MOVES ---
def test_build_uci() -> None:
    assert build_uci("e2", "e4") == "e2e4"
    assert build_uci("e7", "e8", "Q") == "e7e8q"


@pytest.mark.parametrize(
    "from_square, to_square, promotion",
    [
        ("e9", "e4", None),
        ("e2", "z4", None),
        ("e7", "e8", "k"),  # cannot promote to a king
    ],
)
def test_build_uci_rejects(from_square: str, to_square: str, promotion: str | None) -> None:
    with pytest.raises(InvalidNotationError):
        build_uci(from_square, to_square, promotion)


def test_split_uci() -> None:
    assert split_uci("g1f3") == ("g1", "f3", None)
    assert split_uci("b2b1n") == ("b2", "b1", "n")


@pytest.mark.parametrize("uci", ["e2", "e2e4e5", "e2e4x", "x2e4"])
def test_split_uci_rejects(uci: str) -> None:
    with pytest.raises(InvalidNotationError):
        split_uci(uci)
