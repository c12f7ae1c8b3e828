from sqlalchemy import Column, String, Integer, Boolean, Text, ForeignKey, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from slotbook.models.base import Base, UTCDateTime


class EventType(Base):
    """Bookable meeting template. Read-only input to slot computation."""
    __tablename__ = "event_types"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    team_id = Column(Uuid, ForeignKey("teams.id"), nullable=True)

    slug = Column(String(100), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=False, default=30)

    # Booking constraints
    before_buffer_mins = Column(Integer, nullable=False, default=0)
    after_buffer_mins = Column(Integer, nullable=False, default=0)
    min_notice_hours = Column(Integer, nullable=False, default=0)
    max_daily_bookings = Column(Integer, nullable=True)  # NULL = unlimited
    max_advance_days = Column(Integer, nullable=True)  # NULL = DEFAULT_MAX_ADVANCE_DAYS

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, server_default=func.now())

    team = relationship("Team")

    __table_args__ = (
        UniqueConstraint("team_id", "slug", name="uq_event_types_team_slug"),
    )

    def __repr__(self):
        return f"<EventType(slug={self.slug}, duration={self.duration_minutes})>"
