"""HTTP adapters for the scheduling ports (httpx).

Handles:
- Auth headers (bearer token + per-session user key) and no-cache reads
- Retries for idempotent reads; writes are sent exactly once
- Mapping backend failures onto ``agenda.core.errors``
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

import httpx

from agenda.core.config import settings
from agenda.core.errors import (
    AgendaError,
    ApiError,
    CalendarNotConnectedError,
    CalendarTokenExpiredError,
    NetworkError,
    NotFoundError,
    SlotConflictError,
    UpstreamCalendarError,
)
from agenda.schemas.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentUpdate,
    AuthorizationResult,
    CalendarInfo,
    Patient,
    SyncResult,
)
from agenda.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

# Backend messages that identify error kinds regardless of status code.
_NOT_CONNECTED_MARKERS = ("calendar not connected", "please sync your calendar")
_TOKEN_EXPIRED_MARKERS = ("token is invalid", "token expired", "invalid or expired")
_UPSTREAM_MARKERS = ("calendar event", "unable to create event")
_CONFLICT_MARKERS = ("already exists", "already booked")

# Opens the provider consent page and reports whether the user finished it.
Authorizer = Callable[[str], Awaitable[bool]]


def _error_message(response: httpx.Response) -> str:
    """Backend error bodies look like {statusCode, error, message (str | list)}."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if not isinstance(body, dict):
        return str(body)
    message = body.get("message") or body.get("error") or response.reason_phrase
    if isinstance(message, list):
        return ", ".join(str(m) for m in message)
    return str(message)


def map_error(response: httpx.Response) -> AgendaError:
    """Translate a failed response into an agenda error kind."""
    status = response.status_code
    message = _error_message(response)
    lowered = message.lower()
    path = response.request.url.path if response.request else ""
    is_calendar_path = "/calendar" in path

    if any(marker in lowered for marker in _NOT_CONNECTED_MARKERS):
        return CalendarNotConnectedError(message)
    if any(marker in lowered for marker in _TOKEN_EXPIRED_MARKERS) and "calendar" in lowered:
        return CalendarTokenExpiredError(message)
    if status == 401 and is_calendar_path:
        return CalendarTokenExpiredError(message)
    if status == 409 or any(marker in lowered for marker in _CONFLICT_MARKERS):
        return SlotConflictError(message)
    if status == 502 or any(marker in lowered for marker in _UPSTREAM_MARKERS):
        return UpstreamCalendarError(message)
    if status == 404:
        return NotFoundError(message)
    return ApiError(status, message)


def _as_list(data: Any) -> list[dict]:
    # List endpoints occasionally answer with a non-array body; treat it as empty.
    return data if isinstance(data, list) else []


class ApiClient:
    """Thin async JSON client for the practice backend."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token: str | None = None,
        user_key: str | None = None,
        timeout: float | None = None,
        max_read_attempts: int | None = None,
        retry_base_delay: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.token = token
        self.user_key = user_key
        self.timeout = timeout if timeout is not None else settings.API_TIMEOUT_SECONDS
        self.max_read_attempts = max_read_attempts or settings.API_READ_MAX_ATTEMPTS
        self.retry_base_delay = retry_base_delay
        self._transport = transport

    def _headers(self, method: str) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.user_key:
            headers["x-user-key"] = self.user_key
        if method == "GET":
            headers["Cache-Control"] = "no-cache"
            headers["Pragma"] = "no-cache"
        return headers

    async def request(self, method: str, path: str, *, json: Any = None) -> Any:
        """Send one request and return the decoded JSON body (None when empty)."""
        method = method.upper()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:

                async def request_fn() -> httpx.Response:
                    return await client.request(method, path, headers=self._headers(method), json=json)

                response = await request_with_retries(
                    request_fn,
                    method=method,
                    max_attempts=self.max_read_attempts,
                    base_delay=self.retry_base_delay,
                    max_delay=self.retry_base_delay * 8,
                )
        except httpx.RequestError as exc:
            logger.warning("%s %s failed: %s", method, path, exc.__class__.__name__)
            raise NetworkError() from exc

        if response.is_error:
            error = map_error(response)
            logger.warning(
                "%s %s returned %s (%s)",
                method,
                path,
                response.status_code,
                type(error).__name__,
            )
            raise error
        if not response.content:
            return None
        return response.json()

    async def get(self, path: str) -> Any:
        return await self.request("GET", path)

    async def post(self, path: str, json: Any = None) -> Any:
        return await self.request("POST", path, json=json)

    async def patch(self, path: str, json: Any = None) -> Any:
        return await self.request("PATCH", path, json=json)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)


# =============================================================================
# Port adapters
# =============================================================================

class HttpAppointmentRepository:
    """``AppointmentRepository`` over the /sessions endpoints."""

    base_path = "/sessions"

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def list_all(self) -> list[Appointment]:
        data = await self._client.get(self.base_path)
        return [Appointment.model_validate(item) for item in _as_list(data)]

    async def list_upcoming(self, limit: int | None = None) -> list[Appointment]:
        data = await self._client.get(f"{self.base_path}/upcoming")
        appointments = [Appointment.model_validate(item) for item in _as_list(data)]
        return appointments[:limit] if limit is not None else appointments

    async def list_monthly(self, year: int, month: int) -> list[Appointment]:
        data = await self._client.get(f"{self.base_path}/monthly/{year}/{month}")
        return [Appointment.model_validate(item) for item in _as_list(data)]

    async def get(self, appointment_id: str) -> Appointment:
        data = await self._client.get(f"{self.base_path}/{appointment_id}")
        return Appointment.model_validate(data)

    async def create(self, draft: AppointmentCreate) -> Appointment:
        payload = draft.model_dump(mode="json", by_alias=True, exclude_none=True)
        data = await self._client.post(self.base_path, payload)
        return Appointment.model_validate(data)

    async def update(self, appointment_id: str, patch: AppointmentUpdate) -> Appointment:
        payload = patch.model_dump(mode="json", by_alias=True, exclude_unset=True)
        data = await self._client.patch(f"{self.base_path}/{appointment_id}", payload)
        return Appointment.model_validate(data)

    async def mark_completed(self, appointment_id: str) -> Appointment:
        data = await self._client.patch(f"{self.base_path}/{appointment_id}/complete")
        return Appointment.model_validate(data)

    async def delete(self, appointment_id: str) -> None:
        await self._client.delete(f"{self.base_path}/{appointment_id}")


class HttpPatientLookup:
    def __init__(self, client: ApiClient) -> None:
        self._client = client

    async def by_id(self, patient_id: str) -> Patient:
        data = await self._client.get(f"/patients/{patient_id}")
        return Patient.model_validate(data)


class HttpCalendarAuthorization:
    """
    ``CalendarAuthorization`` over the /calendar endpoints.

    The backend hands out a consent URL; ``authorizer`` (a browser hook in
    the host app) opens it and reports whether the user completed the flow.
    Without an authorizer the URL is returned unconfirmed.
    """

    def __init__(self, client: ApiClient, authorizer: Authorizer | None = None) -> None:
        self._client = client
        self._authorizer = authorizer

    async def request_authorization(self) -> AuthorizationResult:
        data = await self._client.get("/calendar/auth/url")
        auth_url = (data or {}).get("authUrl")
        if not auth_url:
            return AuthorizationResult(success=False, message="No authorization URL returned")
        if self._authorizer is None:
            return AuthorizationResult(success=False, auth_url=auth_url)
        completed = await self._authorizer(auth_url)
        return AuthorizationResult(success=completed, auth_url=auth_url)

    async def sync(self) -> SyncResult:
        data = await self._client.post("/calendar/sync")
        return SyncResult.model_validate(data or {})

    async def list_calendars(self) -> list[CalendarInfo]:
        data = await self._client.get("/internal/calendar/calendars")
        if isinstance(data, dict):
            data = data.get("items") or data.get("calendars")
        return [CalendarInfo.model_validate(item) for item in _as_list(data)]

    async def disconnect(self) -> None:
        await self._client.post("/calendar/disconnect")
