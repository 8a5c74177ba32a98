"""Remote encounter API used by the sync reconciler."""

import logging
from typing import Any, Optional, Protocol

import httpx
from pydantic import ValidationError

from fieldchart.core.config import settings
from fieldchart.core.exceptions import NetworkError, ServerError
from fieldchart.schemas.encounter import SubmitResponse
from fieldchart.schemas.snapshot import EncounterSnapshot

logger = logging.getLogger(__name__)


class EncounterRemoteAPI(Protocol):
    """
    Narrow interface to the encounter server.

    Implementations raise NetworkError when the request may not have
    reached the server and ServerError for any other non-success answer.
    A submit rejected for validation reasons is returned, not raised.
    """

    async def create_encounter(self, snapshot: EncounterSnapshot, actor_id: str) -> str: ...

    async def update_encounter(self, encounter_id: str, snapshot: EncounterSnapshot, actor_id: str) -> str: ...

    async def submit_for_review(
        self,
        encounter_id: str,
        snapshot: EncounterSnapshot,
        actor_id: str,
    ) -> SubmitResponse: ...


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("message")
        if isinstance(detail, str):
            return detail
    return f"Server responded with status {response.status_code}"


def _encounter_id(response: httpx.Response) -> str:
    try:
        body = response.json()
        return str(body["id"])
    except (ValueError, KeyError, TypeError) as exc:
        raise ServerError("Unreadable encounter response from server", response.status_code) from exc


def _submit_response(body: Any, status_code: int) -> SubmitResponse:
    try:
        return SubmitResponse.model_validate(body)
    except ValidationError as exc:
        raise ServerError("Unreadable submit response from server", status_code) from exc


class HttpEncounterAPI:
    """
    httpx implementation against the `/api/v1/encounters` routes.

    Usage:
        async with HttpEncounterAPI() as remote:
            encounter_id = await remote.create_encounter(snapshot, actor_id)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.REMOTE_API_BASE_URL,
            timeout=timeout if timeout is not None else settings.REMOTE_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> "HttpEncounterAPI":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, actor_id: str, snapshot: EncounterSnapshot) -> httpx.Response:
        try:
            return await self._client.request(
                method,
                path,
                json=snapshot.model_dump(mode="json"),
                headers={"Authorization": f"Bearer {actor_id}"},
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Timed out calling {method} {path}") from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"Could not reach encounter server: {exc}") from exc

    async def create_encounter(self, snapshot: EncounterSnapshot, actor_id: str) -> str:
        response = await self._request("POST", "/encounters", actor_id, snapshot)
        if not response.is_success:
            raise ServerError(_error_message(response), response.status_code)
        return _encounter_id(response)

    async def update_encounter(self, encounter_id: str, snapshot: EncounterSnapshot, actor_id: str) -> str:
        response = await self._request("PUT", f"/encounters/{encounter_id}", actor_id, snapshot)
        if not response.is_success:
            raise ServerError(_error_message(response), response.status_code)
        return _encounter_id(response)

    async def submit_for_review(
        self,
        encounter_id: str,
        snapshot: EncounterSnapshot,
        actor_id: str,
    ) -> SubmitResponse:
        response = await self._request("PUT", f"/encounters/{encounter_id}/submit", actor_id, snapshot)
        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_success:
            if body is None:
                raise ServerError("Unreadable submit response from server", response.status_code)
            return _submit_response(body, response.status_code)

        # Request-body validation errors from FastAPI carry no success flag
        if response.status_code == 422 and isinstance(body, dict) and body.get("success") is False:
            return _submit_response(body, response.status_code)

        raise ServerError(_error_message(response), response.status_code)
