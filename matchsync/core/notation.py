"""
Lightweight reading of the compact text notations exchanged with the server.

The rules engine owns the full interpretation of a position. The synchronizer only needs a few fields of it
(who is to move, are the squares sane), and the clock estimator must not depend on the rules engine at all.
"""

from string import ascii_lowercase

from matchsync.core.exceptions import InvalidNotationError
from matchsync.core.shared_types import Color

STARTING_FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"
BOARD_DIMENSIONS = (8, 8)
PROMOTION_PIECES = ("q", "r", "b", "n")
COLOR_CODES = {"w": Color.WHITE, "b": Color.BLACK}


def is_valid_square(square: str) -> bool:
    """Valid square should be a letter for the file + a number for the rank"""
    num_files, num_ranks = BOARD_DIMENSIONS
    if len(square) != 2:
        return False

    file_char, rank_char = square[0], square[1]
    if file_char not in ascii_lowercase[:num_files]:
        return False

    return rank_char in "".join(str(rank) for rank in range(1, num_ranks + 1))


def is_valid_fen(fen: str) -> bool:
    """
    Structural check only: 6 space-separated fields, 8 ranks in the placement and a known active color.
    ----

    <board position string><active color><castling rights><en passant square><# half move clock><number turns played>
    """
    parts = fen.strip().split(" ")
    if len(parts) != 6:
        return False

    placement, color = parts[0], parts[1]
    if len(placement.split("/")) != BOARD_DIMENSIONS[1]:
        return False

    if color not in COLOR_CODES:
        return False

    half_move_counter, full_move_counter = parts[4], parts[5]
    return half_move_counter.isdigit() and full_move_counter.isdigit()


def side_to_move(fen: str) -> Color:
    """Color of the side that moves next in the given position."""
    if not is_valid_fen(fen):
        raise InvalidNotationError(f"Cannot interpret supplied string as FEN: {fen!r}")
    return COLOR_CODES[fen.strip().split(" ")[1]]


def build_uci(
    from_square: str, to_square: str, promotion: str | None = None
) -> str:
    """Squares in algebraic notation (+ optional promotion piece letter) to a move in UCI notation."""
    for square in (from_square, to_square):
        if not is_valid_square(square):
            raise InvalidNotationError(
                f"Cannot interpret {square!r} as a valid square name."
            )

    if promotion is None:
        return f"{from_square}{to_square}"

    piece = promotion.lower()
    if piece not in PROMOTION_PIECES:
        raise InvalidNotationError(
            f"Cannot promote to {promotion!r}. Pick one from {','.join(PROMOTION_PIECES)}"
        )
    return f"{from_square}{to_square}{piece}"


def split_uci(uci: str) -> tuple[str, str, str | None]:
    """Reverse of build_uci(): 'e7e8q' -> ('e7', 'e8', 'q')"""
    if len(uci) not in (4, 5):
        raise InvalidNotationError(f"Cannot interpret {uci!r} as a UCI move.")

    promotion = uci[4] if len(uci) == 5 else None
    # round trip through build_uci() for validation
    build_uci(uci[:2], uci[2:4], promotion)
    return uci[:2], uci[2:4], promotion
