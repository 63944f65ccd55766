"""Calendar sync coordinator.

Tracks the external calendar connection and gates agenda actions on it:
- disconnected -> connected-idle only after authorization succeeds
- connected-idle -> connected-syncing on ``trigger_sync``
- connected-syncing -> connected-idle when the sync call returns
  (``last_sync_at`` moves only on success)

At most one sync is in flight; a trigger while syncing is a no-op.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from agenda.core.errors import (
    AgendaError,
    CalendarNotConnectedError,
    CalendarTokenExpiredError,
)
from agenda.core.state import StateContainer
from agenda.core.structured_logging import build_log_context
from agenda.enums import CalendarSyncPhase, GatedAction
from agenda.schemas.appointment import CalendarInfo, SyncResult
from agenda.services.ports import CalendarAuthorization
from agenda.utils.datetime_parsing import utc_now

logger = logging.getLogger(__name__)

# Starting something new needs the calendar; touching existing sessions never does.
CALENDAR_REQUIRED_ACTIONS = frozenset({GatedAction.CREATE, GatedAction.SELECT_DATE})


class CalendarSyncCoordinator(StateContainer):
    """Connection state, sync status and action gating for one session."""

    def __init__(
        self,
        authorization: CalendarAuthorization,
        *,
        therapist_id: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__()
        self._authorization = authorization
        self._therapist_id = therapist_id
        self._clock = clock
        self._connected = False
        self._syncing = False
        self._checking = False
        self._last_sync_at: datetime | None = None
        self._last_synced_count: int | None = None
        self._calendars: tuple[CalendarInfo, ...] = ()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def syncing(self) -> bool:
        return self._syncing

    @property
    def checking_connection(self) -> bool:
        return self._checking

    @property
    def last_sync_at(self) -> datetime | None:
        return self._last_sync_at

    @property
    def last_synced_count(self) -> int | None:
        return self._last_synced_count

    @property
    def calendars(self) -> tuple[CalendarInfo, ...]:
        return self._calendars

    @property
    def phase(self) -> CalendarSyncPhase:
        if not self._connected:
            return CalendarSyncPhase.DISCONNECTED
        if self._syncing:
            return CalendarSyncPhase.CONNECTED_SYNCING
        return CalendarSyncPhase.CONNECTED_IDLE

    def _log_extra(self, action: str) -> dict:
        return build_log_context(therapist_id=self._therapist_id, action=action)

    # -------------------------------------------------------------------------
    # Gating
    # -------------------------------------------------------------------------

    def is_action_allowed(self, action: GatedAction) -> bool:
        if action in CALENDAR_REQUIRED_ACTIONS:
            return self._connected
        return True

    def require(self, action: GatedAction) -> None:
        """Raise CalendarNotConnectedError when ``action`` is gated."""
        if not self.is_action_allowed(action):
            raise CalendarNotConnectedError()

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    async def connect(self) -> bool:
        """Run the external authorization. Returns True once connected."""
        result = await self._authorization.request_authorization()
        if not result.success:
            logger.info("Calendar authorization not completed", extra=self._log_extra("connect"))
            return False
        self._connected = True
        logger.info("Calendar connected", extra=self._log_extra("connect"))
        self._notify()
        return True

    async def check_connection(self) -> bool:
        """
        Probe the provider: connected iff at least one calendar is listed.

        "Not connected" answers are the normal state for new users; other
        failures are logged and also leave the coordinator disconnected.
        """
        self._checking = True
        self._notify()
        try:
            calendars = await self._authorization.list_calendars()
        except CalendarNotConnectedError:
            calendars = []
        except AgendaError as exc:
            logger.warning(
                "Calendar connection check failed: %s",
                exc,
                extra=self._log_extra("check_connection"),
            )
            calendars = []
        finally:
            self._checking = False
        self._calendars = tuple(calendars)
        self._connected = len(self._calendars) > 0
        self._notify()
        return self._connected

    async def disconnect(self) -> None:
        await self._authorization.disconnect()
        self._connected = False
        self._calendars = ()
        self._last_sync_at = None
        logger.info("Calendar disconnected", extra=self._log_extra("disconnect"))
        self._notify()

    def mark_disconnected(self) -> None:
        """Record an authorization loss reported by another operation (e.g. a save)."""
        if not self._connected:
            return
        self._connected = False
        logger.warning("Calendar authorization lost", extra=self._log_extra("mark_disconnected"))
        self._notify()

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    async def trigger_sync(self) -> SyncResult | None:
        """
        Start one sync. Returns None (no-op) when a sync is already in flight.

        Raises CalendarNotConnectedError when disconnected. An expired token
        drops the coordinator back to disconnected before re-raising.
        """
        if self._syncing:
            return None
        if not self._connected:
            raise CalendarNotConnectedError()

        self._syncing = True
        self._notify()
        try:
            result = await self._authorization.sync()
        except CalendarTokenExpiredError:
            self._connected = False
            logger.warning("Calendar token expired during sync", extra=self._log_extra("sync"))
            raise
        except Exception:
            logger.warning("Calendar sync failed", extra=self._log_extra("sync"))
            raise
        finally:
            self._syncing = False
            self._notify()

        self._last_sync_at = self._clock()
        self._last_synced_count = result.synced_count
        logger.info(
            "Calendar synced %s sessions",
            result.synced_count,
            extra=self._log_extra("sync"),
        )
        self._notify()
        return result

    def reset(self) -> None:
        """Drop all state (logout)."""
        self._connected = False
        self._syncing = False
        self._checking = False
        self._last_sync_at = None
        self._last_synced_count = None
        self._calendars = ()
        self._notify()
