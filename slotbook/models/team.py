from sqlalchemy import Column, String, Boolean, LargeBinary, ForeignKey, Uuid, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from slotbook.models.base import Base, UTCDateTime


class Team(Base):
    __tablename__ = "teams"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    slug = Column(String(100), nullable=False, unique=True)
    description = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(UTCDateTime, server_default=func.now())

    memberships = relationship("TeamMembership", back_populates="team")

    def __repr__(self):
        return f"<Team(id={self.id}, slug={self.slug})>"


class TeamMember(Base):
    """A bookable host. Deactivated, never hard-deleted, while bookings reference it."""
    __tablename__ = "team_members"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    email = Column(String(254), nullable=False, unique=True)

    # Calendar identity (usually the member's Workspace address)
    google_calendar_id = Column(String(254), nullable=False)

    # OAuth refresh token, Fernet-encrypted; never sent to clients
    google_oauth_refresh_token_encrypted = Column(LargeBinary, nullable=True)
    google_oauth_connected_at = Column(UTCDateTime, nullable=True)
    google_oauth_revoked_at = Column(UTCDateTime, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    # Round-robin fairness cursor: time of last confirmed assignment, only moves forward
    last_booked_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, server_default=func.now())

    availability_rules = relationship("AvailabilityRule", back_populates="team_member")
    memberships = relationship("TeamMembership", back_populates="team_member")

    __table_args__ = (
        Index("ix_team_members_active_cursor", "is_active", "last_booked_at"),
    )

    @property
    def has_oauth_credential(self) -> bool:
        return bool(self.google_oauth_refresh_token_encrypted) and self.google_oauth_revoked_at is None

    def __repr__(self):
        return f"<TeamMember(id={self.id}, email={self.email})>"


class TeamMembership(Base):
    __tablename__ = "team_memberships"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    team_id = Column(Uuid, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    team_member_id = Column(Uuid, ForeignKey("team_members.id"), nullable=False)

    role = Column(String(20), default="member", nullable=False)  # admin, member
    is_active = Column(Boolean, default=True, nullable=False)
    in_round_robin = Column(Boolean, default=True, nullable=False)

    joined_at = Column(UTCDateTime, server_default=func.now())

    team = relationship("Team", back_populates="memberships")
    team_member = relationship("TeamMember", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("team_id", "team_member_id", name="uq_team_memberships_team_member"),
    )
