"""
LegalMoveOracle: the only way the synchronizer talks to a rules engine.

The synchronizer never implements chess rules itself. It asks the oracle which squares a piece may move to,
whether a move needs a promotion choice, and (for validation before dispatch) whether the move is legal at all.
The default implementation wraps the python-chess library.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Optional, Protocol

import chess

from matchsync.core.exceptions import IllegalMoveError, InvalidNotationError
from matchsync.core.models import Square
from matchsync.core.notation import PROMOTION_PIECES
from matchsync.core.shared_types import Color


class TerminalState(StrEnum):
    CHECKMATE = "checkmate"
    STALEMATE = "stalemate"
    DRAW = "draw"


@dataclass(frozen=True)
class MoveResult:
    position: str
    terminal_state: Optional[TerminalState] = None


class LegalMoveOracle(Protocol):
    """Rules engine, consumed as a black box."""

    def legal_targets(self, position: str, square: Square) -> list[Square]:
        """Ordered list of squares the piece on 'square' may legally move to. Empty if none (or no piece)."""
        ...

    def piece_color_at(self, position: str, square: Square) -> Color | None:
        """Color of the piece standing on 'square', None for an empty square."""
        ...

    def needs_promotion(
        self, position: str, from_square: Square, to_square: Square
    ) -> bool:
        """True if from->to is a legal pawn push/capture onto the last rank."""
        ...

    def apply(
        self,
        position: str,
        from_square: Square,
        to_square: Square,
        promotion: str | None = None,
    ) -> MoveResult:
        """Resulting position (+ terminal classification). Raises IllegalMoveError if not legal."""
        ...


class ChessLibOracle:
    """LegalMoveOracle backed by python-chess."""

    def legal_targets(self, position: str, square: Square) -> list[Square]:
        board = self._board(position)
        from_index = self._square(square)
        # promotions yield 4 moves onto the same square. Keep each target once, in generation order.
        targets = dict.fromkeys(
            chess.square_name(move.to_square)
            for move in board.legal_moves
            if move.from_square == from_index
        )
        return list(targets)

    def piece_color_at(self, position: str, square: Square) -> Color | None:
        board = self._board(position)
        piece = board.piece_at(self._square(square))
        if piece is None:
            return None
        return Color.WHITE if piece.color == chess.WHITE else Color.BLACK

    def needs_promotion(
        self, position: str, from_square: Square, to_square: Square
    ) -> bool:
        board = self._board(position)
        from_index, to_index = self._square(from_square), self._square(to_square)
        return any(
            move.promotion is not None
            for move in board.legal_moves
            if move.from_square == from_index and move.to_square == to_index
        )

    def apply(
        self,
        position: str,
        from_square: Square,
        to_square: Square,
        promotion: str | None = None,
    ) -> MoveResult:
        board = self._board(position)
        move = chess.Move(
            self._square(from_square),
            self._square(to_square),
            promotion=self._promotion_piece(promotion),
        )
        if move not in board.legal_moves:
            raise IllegalMoveError(f"Move not allowed: {move.uci()}")

        board.push(move)
        return MoveResult(position=board.fen(), terminal_state=self._terminal(board))

    # -- PRIVATE HELPERS ---
    def _board(self, position: str) -> chess.Board:
        try:
            return chess.Board(position)
        except ValueError as exc:
            raise InvalidNotationError(
                f"Cannot interpret supplied string as FEN: {position!r}"
            ) from exc

    def _square(self, square: Square) -> int:
        try:
            return chess.parse_square(square)
        except ValueError as exc:
            raise InvalidNotationError(
                f"Cannot interpret {square!r} as a valid square name."
            ) from exc

    def _promotion_piece(self, promotion: str | None) -> int | None:
        if promotion is None:
            return None
        if promotion.lower() not in PROMOTION_PIECES:
            raise IllegalMoveError(f"Cannot promote to {promotion!r}")
        return chess.Piece.from_symbol(promotion.lower()).piece_type

    def _terminal(self, board: chess.Board) -> TerminalState | None:
        if board.is_checkmate():
            return TerminalState.CHECKMATE
        if board.is_stalemate():
            return TerminalState.STALEMATE
        if board.is_insufficient_material() or board.can_claim_fifty_moves():
            return TerminalState.DRAW
        return None
