"""Implementation of MatchRepository on top of the backend's REST API"""

import asyncio
import json
import logging
from typing import Any, Mapping, Self
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from pydantic import ValidationError

from matchsync.api.models import (
    CreateMatchBody,
    MoveBody,
    MoveHistoryResponse,
    parse_join_response,
    parse_match,
)
from matchsync.api.routes import (
    CREATE_MATCH_PATH,
    LEAVE_QUEUE_PATH,
    Action,
    action_path,
    history_path,
    join_queue_path,
    match_path,
    user_matches_path,
)
from matchsync.core.config import DEFAULT_HTTP_TIMEOUT_SECONDS, SyncConfig
from matchsync.core.exceptions import (
    ActionRejectedError,
    AuthenticationError,
    InvalidMessageError,
    RepositoryError,
    TransportError,
)
from matchsync.core.models import (
    JoinQueueResult,
    MatchId,
    MatchSnapshot,
    MoveRecord,
    PlayerId,
)
from matchsync.core.notation import build_uci
from matchsync.core.shared_types import GameType
from matchsync.db.repository import CredentialProvider

logger = logging.getLogger(__name__)


class RestMatchRepository:
    """
    Data fetched from / actions sent to the backend over HTTP.

    urllib blocks, so every request runs in a worker thread (asyncio.to_thread). The event loop that
    drives the synchronizer never waits on the network.
    """

    def __init__(
        self,
        base_url: str,
        credentials: CredentialProvider,
        timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config: SyncConfig, credentials: CredentialProvider) -> Self:
        return cls(config.api_base, credentials, config.http_timeout_seconds)

    # -- MatchRepository ---
    async def get(self, match_id: MatchId) -> MatchSnapshot:
        body = await self._request("GET", match_path(match_id))
        return parse_match(self._expect_object(body))

    async def submit_move(
        self,
        match_id: MatchId,
        from_square: str,
        to_square: str,
        promotion: str | None = None,
    ) -> MatchSnapshot:
        move = MoveBody(move_uci=build_uci(from_square, to_square, promotion))
        body = await self._request(
            "POST", action_path(match_id, Action.MOVE), move.model_dump(by_alias=True)
        )
        return parse_match(self._expect_object(body))

    async def resign(self, match_id: MatchId) -> MatchSnapshot:
        return await self._match_action(match_id, Action.RESIGN)

    async def offer_draw(self, match_id: MatchId) -> MatchSnapshot:
        return await self._match_action(match_id, Action.OFFER_DRAW)

    async def accept_draw(self, match_id: MatchId) -> MatchSnapshot:
        return await self._match_action(match_id, Action.ACCEPT_DRAW)

    async def decline_draw(self, match_id: MatchId) -> MatchSnapshot:
        return await self._match_action(match_id, Action.DECLINE_DRAW)

    async def join_queue(self, game_type: GameType) -> JoinQueueResult:
        body = await self._request("POST", join_queue_path(game_type))
        return parse_join_response(self._expect_object(body) if body else None)

    async def leave_queue(self) -> None:
        await self._request("POST", LEAVE_QUEUE_PATH)

    async def move_history(self, match_id: MatchId) -> list[MoveRecord]:
        body = await self._request("GET", history_path(match_id))
        try:
            return [
                MoveHistoryResponse.model_validate(entry).to_record()
                for entry in self._expect_list(body)
            ]
        except ValidationError as exc:
            raise InvalidMessageError(f"Malformed move history: {exc}") from exc

    async def user_matches(self, player_id: PlayerId) -> list[MatchSnapshot]:
        body = await self._request("GET", user_matches_path(player_id))
        return [parse_match(entry) for entry in self._expect_list(body)]

    async def create_match(
        self, player2_id: PlayerId, game_type: GameType
    ) -> MatchSnapshot:
        request = CreateMatchBody(player2_id=player2_id, game_type=game_type)
        body = await self._request(
            "POST", CREATE_MATCH_PATH, request.model_dump(by_alias=True, mode="json")
        )
        return parse_match(self._expect_object(body))

    # -- Internal helpers --
    async def _match_action(self, match_id: MatchId, action: Action) -> MatchSnapshot:
        body = await self._request("POST", action_path(match_id, action))
        return parse_match(self._expect_object(body))

    async def _request(
        self, method: str, path: str, payload: Mapping[str, Any] | None = None
    ) -> Any:
        # the credential provider is only touched on the event loop thread, never from the worker
        token = self.credentials.current_token()
        try:
            return await asyncio.to_thread(self._send, method, path, payload, token)
        except AuthenticationError:
            logger.warning("Credential rejected by %s %s, invalidating it.", method, path)
            self.credentials.invalidate()
            raise

    def _send(
        self,
        method: str,
        path: str,
        payload: Mapping[str, Any] | None,
        token: str | None,
    ) -> Any:
        """Blocking HTTP round trip, run in a worker thread. Decodes the JSON body (None for an empty body)."""
        url = f"{self.base_url}{path}"
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        request = Request(url=url, data=data, method=method)
        request.add_header("Content-Type", "application/json")
        request.add_header("Accept", "application/json")
        if token:
            request.add_header("Authorization", f"Bearer {token}")

        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                raw = response.read().decode("utf-8")
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise self._error_for_status(exc.code, detail, method, url) from exc
        except URLError as exc:
            raise TransportError(f"Network error calling {url}: {exc.reason}") from exc
        except OSError as exc:
            raise TransportError(f"Network error calling {url}: {exc}") from exc

        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RepositoryError(f"{method} {url} did not return JSON.") from exc

    def _error_for_status(
        self, status: int, detail: str, method: str, url: str
    ) -> Exception:
        message = _server_message(detail) or f"HTTP {status}"
        if status == 401:
            return AuthenticationError("Unauthorized")
        if status in (403, 404):
            return RepositoryError(f"{method} {url}: {message}")
        if 400 <= status < 500:
            logger.info("%s %s rejected (%s): %s", method, url, status, message)
            return ActionRejectedError(message)
        return TransportError(f"HTTP {status} from {url}: {message}")

    def _expect_object(self, body: Any) -> Mapping[str, Any]:
        if not isinstance(body, Mapping):
            raise RepositoryError(f"Expected a JSON object, got {type(body).__name__}.")
        return body

    def _expect_list(self, body: Any) -> list[Any]:
        if not isinstance(body, list):
            raise RepositoryError(f"Expected a JSON list, got {type(body).__name__}.")
        return body


def _server_message(detail: str) -> str | None:
    """The backend reports errors as {"message": ...} or {"error": ...}"""
    if not detail:
        return None
    try:
        data = json.loads(detail)
    except json.JSONDecodeError:
        return detail.strip() or None
    if isinstance(data, Mapping):
        return data.get("message") or data.get("error")
    return None
