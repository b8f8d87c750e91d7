"""Maintenance mode with an optional self-expiring deadline."""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from .errors import InvalidInput

logger = logging.getLogger(__name__)

EVICTION_MODES = {"hard", "soft"}


class MaintenanceState:
    """Active flag, operator message, branding and deadline.

    At most one expiry timer exists; every transition cancels the previous one
    before doing anything else. Expiry is the only transition not driven by an
    explicit call, so it is reported through the expiry listener.
    """

    def __init__(self, *, message: str, on_expire: Callable[[dict[str, Any]], None] | None = None):
        self.active = False
        self.message = message
        self.logo_url: str | None = None
        self.until: datetime | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._on_expire = on_expire

    def set_expiry_listener(self, listener: Callable[[dict[str, Any]], None] | None) -> None:
        self._on_expire = listener

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    def snapshot(self) -> dict[str, Any]:
        return {
            "status": self.active,
            "message": self.message,
            "logoUrl": self.logo_url,
            "until": self.until.isoformat() if self.until else None,
        }

    def enable(
        self,
        message: str | None = None,
        logo_url: str | None = None,
        duration_minutes: float | None = None,
    ) -> dict[str, Any]:
        if duration_minutes is not None and not math.isfinite(duration_minutes):
            raise InvalidInput("durationMinutes must be a finite number")
        seconds, until = self._deadline(duration_minutes)
        loop = asyncio.get_running_loop() if until is not None else None
        self._cancel_timer()
        self.active = True
        if message is not None and message.strip():
            self.message = message.strip()
        if logo_url is not None:
            self.logo_url = logo_url.strip() or None

        self.until = until
        if until is not None:
            self._timer = loop.call_later(seconds, self._expire)
            logger.info("Maintenance enabled until %s", until.isoformat())
        else:
            logger.info("Maintenance enabled without deadline")
        return self.snapshot()

    @staticmethod
    def _deadline(duration_minutes: float | None) -> tuple[float, datetime | None]:
        if duration_minutes is None or duration_minutes <= 0:
            return 0.0, None
        seconds = duration_minutes * 60.0
        try:
            return seconds, datetime.now(timezone.utc) + timedelta(seconds=seconds)
        except (OverflowError, ValueError) as e:
            raise InvalidInput("durationMinutes is out of range") from e

    def disable(self) -> dict[str, Any]:
        self._cancel_timer()
        was_active = self.active
        self.active = False
        self.until = None
        if was_active:
            logger.info("Maintenance disabled")
        return self.snapshot()

    def shutdown(self) -> None:
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _expire(self) -> None:
        # The handle has already fired; drop it so disable() does not cancel it.
        self._timer = None
        logger.info("Maintenance window expired")
        snapshot = self.disable()
        if self._on_expire is None:
            return
        try:
            self._on_expire(snapshot)
        except Exception:
            logger.exception("Maintenance expiry listener failed")
