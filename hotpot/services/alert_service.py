"""
Service layer for operator alerts.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, List, Optional
import logging

import httpx

from ..time_utils import now_ms

logger = logging.getLogger(__name__)

# Number of alerts kept for the /state endpoint
MAX_RECENT_ALERTS = 50


class AlertService:
    """
    Records alerts raised by the controller (a silent sensor, for example)
    and forwards them to a webhook when one is configured.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: float = 10.0,
        max_recent: int = MAX_RECENT_ALERTS,
    ) -> None:
        self.webhook_url = webhook_url or None
        self.timeout = timeout
        self._recent: Deque[Dict[str, Any]] = deque(maxlen=max_recent)

    async def alert(self, subject: str, message: str) -> None:
        """
        Log the alert and deliver it. Delivery failures are logged only; an
        alert must never take the controller down.
        """
        entry = {"subject": subject, "message": message, "time": now_ms()}
        self._recent.append(entry)
        logger.error("alert subject=%s message=%s", subject, message)

        if not self.webhook_url:
            return
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.webhook_url, json=entry)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("alert.delivery_failed url=%s error=%s", self.webhook_url, exc)

    async def thermostat_alert(self, message: str) -> None:
        """Alert handler signature expected by `Thermostat`."""
        await self.alert("Hotpot thermostat alert", message)

    def recent(self) -> List[Dict[str, Any]]:
        """Most recent alerts, oldest first."""
        return list(self._recent)
