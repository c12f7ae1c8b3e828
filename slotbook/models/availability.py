from sqlalchemy import Column, Integer, Boolean, Time, ForeignKey, Uuid, Index
from sqlalchemy.orm import relationship
import uuid

from slotbook.models.base import Base


class AvailabilityRule(Base):
    """Weekly working hours for one team member.

    A day with no available rule has zero availability.
    """
    __tablename__ = "availability_rules"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    team_member_id = Column(Uuid, ForeignKey("team_members.id", ondelete="CASCADE"), nullable=False)

    day_of_week = Column(Integer, nullable=False)  # 0=Sunday, 6=Saturday
    start_time = Column(Time, nullable=False)  # local wall-clock
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    team_member = relationship("TeamMember", back_populates="availability_rules")

    __table_args__ = (
        Index("ix_availability_rules_member_day", "team_member_id", "day_of_week"),
    )

    def __repr__(self):
        return (
            f"<AvailabilityRule(member={self.team_member_id}, day={self.day_of_week}, "
            f"{self.start_time}-{self.end_time})>"
        )
