# slotbook/services/webhook/webhook_service.py
import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.orm import Session

from slotbook.config.settings import get_settings
from slotbook.models.webhook_endpoint import WebhookEndpoint

logger = logging.getLogger(__name__)


@dataclass
class WebhookDelivery:
    endpoint_id: str
    url: str
    delivered: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


class WebhookService:
    """Signed, single-attempt delivery of booking events to registered endpoints"""

    VALID_EVENT_TYPES = [
        "booking.created",
        "booking.cancelled",
        "booking.rescheduled",
        "booking.reminder",
    ]

    def __init__(self, db: Session, http_client: Optional[httpx.AsyncClient] = None):
        self.db = db
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=get_settings().WEBHOOK_TIMEOUT_SECONDS,
            follow_redirects=True
        )

    async def fire_webhook(self, event_type: str, event_data: Dict[str, Any]) -> List[WebhookDelivery]:
        """
        Deliver an event to every active endpoint subscribed to it.

        One attempt per endpoint; a failing endpoint does not affect the others.
        """
        if event_type not in self.VALID_EVENT_TYPES:
            raise ValueError(f"Invalid event type: {event_type}")

        endpoints = self._get_subscribed_endpoints(event_type)
        if not endpoints:
            return []

        payload = self._build_payload(event_type, event_data)
        deliveries = []
        for endpoint in endpoints:
            deliveries.append(await self._deliver_webhook(endpoint, event_type, payload))
        return deliveries

    async def _deliver_webhook(self, endpoint: WebhookEndpoint, event_type: str,
                               payload: Dict[str, Any]) -> WebhookDelivery:
        payload_json = json.dumps(payload)
        signature = self._sign_payload(payload_json, endpoint.secret)

        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": signature,
            "X-Webhook-Event": event_type,
            "X-Webhook-Id": payload["id"],
            "X-Webhook-Timestamp": payload["timestamp"],
            "User-Agent": "Slotbook-Webhook/1.0"
        }

        try:
            response = await self.http_client.post(endpoint.url, content=payload_json, headers=headers)

            if 200 <= response.status_code < 300:
                logger.info(f"Webhook {event_type} delivered to {endpoint.url}")
                return WebhookDelivery(str(endpoint.id), endpoint.url, True, response.status_code)

            error = f"HTTP {response.status_code}: {response.text[:200]}"

        except httpx.TimeoutException:
            error = "Request timeout"
        except httpx.RequestError as e:
            error = f"Request error: {str(e)[:200]}"

        logger.warning(f"Webhook {event_type} to {endpoint.url} failed: {error}")
        return WebhookDelivery(str(endpoint.id), endpoint.url, False, error=error)

    def _get_subscribed_endpoints(self, event_type: str) -> List[WebhookEndpoint]:
        """Get all active webhook endpoints subscribed to this event type."""
        endpoints = self.db.query(WebhookEndpoint).filter(WebhookEndpoint.is_active.is_(True)).all()
        return [endpoint for endpoint in endpoints if endpoint.subscribes_to(event_type)]

    @staticmethod
    def _build_payload(event_type: str, event_data: Dict[str, Any]) -> Dict[str, Any]:
        """Build the webhook payload in a consistent format."""
        return {
            "id": str(uuid.uuid4()),
            "event": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": event_data
        }

    @staticmethod
    def _sign_payload(payload_json: str, secret: str) -> str:
        """HMAC-SHA256 over the exact request body."""
        signature = hmac.new(
            secret.encode(),
            payload_json.encode(),
            hashlib.sha256
        ).hexdigest()

        return f"sha256={signature}"

    @staticmethod
    def verify_signature(payload_json: str, signature: str, secret: str) -> bool:
        expected_signature = WebhookService._sign_payload(payload_json, secret)
        return hmac.compare_digest(signature, expected_signature)

    async def close(self):
        if self._owns_client:
            await self.http_client.aclose()
