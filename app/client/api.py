"""
Roomify Match Core — HTTP client for the match & chat API

Thin async wrapper over ``httpx.AsyncClient`` that speaks the ``/api/v1``
routes and hands back the same pydantic schemas the server emits.

Failures are raised as the shared domain exceptions:

- 4xx responses map back to ``ValidationError`` / ``ForbiddenError`` /
  ``NotFoundError`` / ``ConflictError`` through ``error_for_status``.
- Transport failures and 5xx responses become ``NetworkError``.

Idempotent calls (reads, mark-read, card answers) are retried on
``NetworkError`` with exponential backoff.  Sends and proposals are never
retried automatically; a duplicate would post twice.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import get_settings
from app.exceptions import NetworkError, ValidationError, error_for_status
from app.models.match import SwipeDirection
from app.models.user import ActorRole
from app.schemas.chat import ChatMessageResponse
from app.schemas.match import ConversationItem, MatchInfo, MatchOutcome, PendingLikeItem
from app.services.action_workflow import parse_lease_start, parse_viewing_datetime, validate_price

logger = structlog.get_logger("roomify.client.api")

ACTOR_HEADER = "X-Actor-Id"


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        detail = body["detail"]
        return detail if isinstance(detail, str) else str(detail)
    return str(body)


class MatchApiClient:
    """API client bound to one acting user.

    Usage::

        async with MatchApiClient(actor_id) as api:
            info = await api.match_info(match_id)
    """

    def __init__(
        self,
        actor_id: uuid.UUID,
        base_url: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
        retry_attempts: int | None = None,
        retry_wait=None,
    ) -> None:
        settings = get_settings()
        self.actor_id = actor_id
        self._retry_attempts = retry_attempts or settings.CLIENT_RETRY_ATTEMPTS
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.5, min=0.5, max=8)
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            headers={ACTOR_HEADER: str(actor_id)},
            timeout=timeout or settings.CLIENT_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> "MatchApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Transport ─────────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.warning("api_transport_error", method=method, path=path, error=str(exc))
            raise NetworkError(f"{method} {path} failed: {exc}", original_error=exc) from exc

        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.info(
                "api_error_response",
                method=method,
                path=path,
                status_code=response.status_code,
                detail=detail,
            )
            raise error_for_status(response.status_code, detail)

        if not response.content:
            return None
        return response.json()

    async def _request_with_retry(self, method: str, path: str, json: Any = None) -> Any:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(NetworkError),
            stop=stop_after_attempt(self._retry_attempts),
            wait=self._retry_wait,
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "api_retry",
                        method=method,
                        path=path,
                        attempt_number=attempt.retry_state.attempt_number,
                    )
                return await self._request(method, path, json=json)

    # ── Swipes & matches ──────────────────────────────────────────────────

    async def swipe(
        self,
        role: ActorRole,
        candidate_id: uuid.UUID,
        direction: SwipeDirection = SwipeDirection.LIKE,
        property_id: uuid.UUID | None = None,
    ) -> MatchOutcome:
        body = {
            "role": ActorRole(role).value,
            "candidate_id": str(candidate_id),
            "direction": SwipeDirection(direction).value,
            "property_id": str(property_id) if property_id else None,
        }
        return MatchOutcome.model_validate(await self._request("POST", "/swipes", json=body))

    async def pending_likes(self) -> list[PendingLikeItem]:
        data = await self._request_with_retry("GET", "/swipes/pending")
        return [PendingLikeItem.model_validate(item) for item in data]

    async def conversations(self) -> list[ConversationItem]:
        data = await self._request_with_retry("GET", "/matches")
        return [ConversationItem.model_validate(item) for item in data]

    async def match_info(self, match_id: uuid.UUID) -> MatchInfo:
        data = await self._request_with_retry("GET", f"/matches/{match_id}/info")
        return MatchInfo.model_validate(data)

    # ── Chat thread ───────────────────────────────────────────────────────

    async def messages(self, match_id: uuid.UUID) -> list[ChatMessageResponse]:
        data = await self._request_with_retry("GET", f"/chats/{match_id}/messages")
        return [ChatMessageResponse.model_validate(item) for item in data]

    async def send_message(self, match_id: uuid.UUID, text: str) -> ChatMessageResponse:
        content = (text or "").strip()
        if not content:
            raise ValidationError("Message text must not be empty.")
        data = await self._request("POST", f"/chats/{match_id}/messages", json={"text": content})
        return ChatMessageResponse.model_validate(data)

    async def mark_read(self, match_id: uuid.UUID) -> int:
        data = await self._request_with_retry("POST", f"/chats/{match_id}/read")
        return int(data.get("updated", 0)) if data else 0

    # ── Action cards ──────────────────────────────────────────────────────

    async def propose_viewing(
        self,
        match_id: uuid.UUID,
        date_time: str | datetime,
    ) -> ChatMessageResponse:
        if isinstance(date_time, datetime):
            date_time = date_time.isoformat()
        parse_viewing_datetime(date_time)
        data = await self._request(
            "POST", f"/chats/{match_id}/viewing/propose", json={"date_time": date_time}
        )
        return ChatMessageResponse.model_validate(data)

    async def accept_viewing(self, match_id: uuid.UUID) -> ChatMessageResponse:
        return await self._answer_card(match_id, "viewing/accept")

    async def decline_viewing(self, match_id: uuid.UUID) -> ChatMessageResponse:
        return await self._answer_card(match_id, "viewing/decline")

    async def send_rent_proposal(
        self,
        match_id: uuid.UUID,
        price,
        lease_start: str | date,
        currency: str = "EUR",
    ) -> ChatMessageResponse:
        if isinstance(lease_start, date):
            lease_start = lease_start.isoformat()
        amount = validate_price(price)
        parse_lease_start(lease_start)
        body = {"price": str(amount), "lease_start": lease_start, "currency": currency}
        data = await self._request("POST", f"/chats/{match_id}/rent/propose", json=body)
        return ChatMessageResponse.model_validate(data)

    async def decline_rent(self, match_id: uuid.UUID) -> ChatMessageResponse:
        return await self._answer_card(match_id, "rent/decline")

    async def pay_rent(self, match_id: uuid.UUID) -> ChatMessageResponse:
        return await self._answer_card(match_id, "rent/pay")

    async def _answer_card(self, match_id: uuid.UUID, route: str) -> ChatMessageResponse:
        # Answers are safe to repeat: a terminal card returns its outcome.
        data = await self._request_with_retry("POST", f"/chats/{match_id}/{route}")
        return ChatMessageResponse.model_validate(data)
