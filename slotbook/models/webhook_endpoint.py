from sqlalchemy import Column, String, Boolean, JSON, Uuid
from sqlalchemy.sql import func
import uuid

from slotbook.models.base import Base, UTCDateTime


class WebhookEndpoint(Base):
    __tablename__ = "webhook_endpoints"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Endpoint configuration
    url = Column(String(500), nullable=False)
    description = Column(String(500))

    # Events to listen for
    enabled_events = Column(JSON, default=list)  # ["booking.created", "*"]

    # Security
    secret = Column(String(128), nullable=False)  # For HMAC signature verification

    # Status
    is_active = Column(Boolean, default=True)

    # Metadata
    created_at = Column(UTCDateTime, server_default=func.now())

    def subscribes_to(self, event_type: str) -> bool:
        events = self.enabled_events or []
        return "*" in events or event_type in events
