import asyncio
import json
import logging
import aiohttp
from typing import Any, Dict, Optional
from datetime import datetime, timezone

from safetravel.core.alert_dispatcher import ALERT_CREATED
from safetravel.core.types import Alert, AlertSeverity

logger = logging.getLogger(__name__)

class AuthorityNotifier:
    """
    Forwards alert records to the authority response system over HTTP.

    Delivery to people (SMS, push, email) happens on the authority side;
    this only hands over the record.
    """

    def __init__(self, webhook_url: str, api_key: str = "", timeout_seconds: float = 10.0):
        self.webhook_url = webhook_url
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def __call__(self, event_name: str, alert: Alert):
        if not self.enabled:
            return
        await self.send(self.build_payload(event_name, alert))

    def build_payload(self, event_name: str, alert: Alert) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "event": event_name,
            "alert": alert.to_dict(),
            "sent_at": datetime.now(timezone.utc).isoformat()
        }
        if event_name == ALERT_CREATED:
            payload["summary"] = self._format_authority_alert(alert)
        return payload

    async def send(self, payload: Dict[str, Any]) -> bool:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    self.webhook_url,
                    data=json.dumps(payload, default=str),
                    headers=headers
                ) as response:
                    if response.status >= 400:
                        body = await response.text()
                        logger.error(f"Authority webhook error: {response.status} - {body[:200]}")
                        return False
                    return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            alert = payload.get("alert", {})
            log = logger.critical if alert.get("severity") == AlertSeverity.CRITICAL.value else logger.error
            log(f"Authority notification failed for alert {alert.get('id')}: {e}")
            return False

    def _format_authority_alert(self, alert: Alert) -> str:
        """Format detailed alert for the authority console"""
        coordinates: Optional[str] = None
        if alert.latitude is not None and alert.longitude is not None:
            coordinates = f"{alert.latitude}, {alert.longitude}"

        return f"""
TOURIST SAFETY ALERT
====================
Alert ID: {alert.id}
Type: {alert.alert_type.value}
Severity: {alert.severity.value.upper()}
Tourist: {alert.tourist_id}
Time: {alert.created_at.isoformat()}
Zone: {alert.zone_id or 'N/A'}
Coordinates: {coordinates or 'N/A'}

{alert.title}
{alert.message}
"""
