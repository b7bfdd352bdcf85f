"""
AI Company Workflow Engine
Team domain models.

Models:
    - Team:        pool of agents serving one phase at a time (reusable across phases)
    - TeamMember:  single agent within a team

Lifecycle states:
    Team:        inactive ⇄ active
    TeamMember:  idle → working → idle  (reviewing / blocked as side states)
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

TEAM_STATUSES = {"active", "inactive"}

MEMBER_STATUSES = {"idle", "working", "reviewing", "blocked"}

MEMBER_ROLES = {"executive", "lead", "member"}

# Executives coordinate the team and are never handed deliverables directly
EXECUTIVE_ROLES = frozenset({"executive"})


class Team(db.Model):
    """Agent team bound to one or more phases of a project."""

    __tablename__ = "teams"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    division = db.Column(db.String(60), default="")
    status = db.Column(
        db.String(20), nullable=False, default="inactive",
        comment="active | inactive",
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("project_id", "name", name="uq_team_project_name"),
    )

    members = db.relationship(
        "TeamMember", backref="team", lazy="dynamic",
        cascade="all, delete-orphan", order_by="TeamMember.id",
    )

    def to_dict(self, include_members=False):
        result = {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "division": self.division,
            "status": self.status,
            "member_count": self.members.count(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_members:
            result["members"] = [m.to_dict() for m in self.members]
        return result

    def __repr__(self):
        return f"<Team {self.id}: {self.name} [{self.status}]>"


class TeamMember(db.Model):
    """Agent seat within a team."""

    __tablename__ = "team_members"

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    agent_id = db.Column(db.String(80), nullable=False)
    agent_name = db.Column(db.String(150), default="")
    role = db.Column(
        db.String(20), nullable=False, default="member",
        comment="executive | lead | member",
    )
    status = db.Column(
        db.String(20), nullable=False, default="idle",
        comment="idle | working | reviewing | blocked",
    )
    current_deliverable_id = db.Column(
        db.Integer, nullable=True,
        comment="Deliverable being worked on (plain id, not a FK)",
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('idle','working','reviewing','blocked')",
            name="ck_team_member_status",
        ),
    )

    @property
    def is_executive(self):
        return self.role in EXECUTIVE_ROLES

    def to_dict(self):
        return {
            "id": self.id,
            "team_id": self.team_id,
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "role": self.role,
            "status": self.status,
            "current_deliverable_id": self.current_deliverable_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<TeamMember {self.id}: {self.agent_id} [{self.status}]>"
