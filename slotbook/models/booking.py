from sqlalchemy import Column, String, Text, ForeignKey, Uuid, JSON, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
import uuid

from slotbook.models.base import Base, UTCDateTime


class BookingStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"  # set by an external time-based process


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # References
    event_type_id = Column(Uuid, ForeignKey("event_types.id"), nullable=False)
    team_member_id = Column(Uuid, ForeignKey("team_members.id"), nullable=False)

    # Invitee info
    invitee_name = Column(String(100), nullable=False)
    invitee_email = Column(String(254), nullable=False)
    invitee_phone = Column(String(20), nullable=True)
    invitee_notes = Column(Text, nullable=True)
    custom_answers = Column(JSON, nullable=True)

    # Booked interval (UTC) and the timezone the invitee booked in
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    timezone = Column(String(64), nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.CONFIRMED.value)

    # Calendar sync; NULL when every calendar tier failed
    calendar_event_id = Column(String(1024), nullable=True)
    join_link = Column(String(500), nullable=True)

    # Self-service capability; the only non-admin key for this booking
    manage_token = Column(String(128), nullable=False, unique=True)

    reminder_sent_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now())
    cancelled_at = Column(UTCDateTime, nullable=True)

    event_type = relationship("EventType")
    team_member = relationship("TeamMember")

    __table_args__ = (
        Index("ix_bookings_member_status_start", "team_member_id", "status", "start_time"),
        Index("ix_bookings_event_type_status_start", "event_type_id", "status", "start_time"),
    )

    @property
    def is_confirmed(self) -> bool:
        return self.status == BookingStatus.CONFIRMED.value

    def __repr__(self):
        return f"<Booking(id={self.id}, status={self.status}, start={self.start_time})>"
