"""Protocol repository (REST backend now, anything that speaks the same contract later)"""

from typing import Protocol

from matchsync.core.models import (
    JoinQueueResult,
    MatchId,
    MatchSnapshot,
    MoveRecord,
    PlayerId,
)
from matchsync.core.shared_types import GameType


class MatchRepository(Protocol):
    """
    Source of truth for match records.

    Every mutating call returns the snapshot the server holds after the action. Implementations raise:
    RepositoryError (record not found), AuthenticationError (credential rejected),
    ActionRejectedError (server refused the action), TransportError (backend unreachable).
    """

    async def get(self, match_id: MatchId) -> MatchSnapshot:
        """Get match by ID."""
        ...

    async def submit_move(
        self,
        match_id: MatchId,
        from_square: str,
        to_square: str,
        promotion: str | None = None,
    ) -> MatchSnapshot:
        """Play a move (REST fallback of the push channel)."""
        ...

    async def resign(self, match_id: MatchId) -> MatchSnapshot: ...

    async def offer_draw(self, match_id: MatchId) -> MatchSnapshot: ...

    async def accept_draw(self, match_id: MatchId) -> MatchSnapshot: ...

    async def decline_draw(self, match_id: MatchId) -> MatchSnapshot: ...

    async def join_queue(self, game_type: GameType) -> JoinQueueResult:
        """Enter matchmaking. Either paired right away, or pending."""
        ...

    async def leave_queue(self) -> None: ...

    async def move_history(self, match_id: MatchId) -> list[MoveRecord]:
        """Moves played so far, in ply order."""
        ...

    async def user_matches(self, player_id: PlayerId) -> list[MatchSnapshot]:
        """All matches (any status) the player took part in."""
        ...

    async def create_match(
        self, player2_id: PlayerId, game_type: GameType
    ) -> MatchSnapshot:
        """Direct challenge: create a match against a known opponent."""
        ...


class CredentialProvider(Protocol):
    """Bearer credential + numeric identity of the logged-in user. Read-only for the synchronizer."""

    def current_token(self) -> str | None: ...

    def current_user_id(self) -> PlayerId | None: ...

    def invalidate(self) -> None:
        """Forget the credential (logout, or the server rejected it)."""
        ...
