"""
AI Company Workflow Engine
Deliverable domain models.

Models:
    - Deliverable:          unit of work inside a phase, gated by dual approval
    - DeliverableFeedback:  append-only feedback / approval trail per deliverable

Dual approval:
    reviewer_approved  — automated reviewer (CEO agent) verdict
    owner_approved     — human project owner verdict
    status == "approved"  ⟺  reviewer_approved and owner_approved

Lifecycle states:
    pending → in_progress → review → approved
                              └──→ rejected → (regeneration) → review
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

DELIVERABLE_STATUSES = {"pending", "in_progress", "review", "approved", "rejected"}

APPROVAL_ACTORS = frozenset({"reviewer", "owner"})

# Actors that may appear in the feedback trail (approvers + content generator)
FEEDBACK_ACTORS = frozenset({"reviewer", "owner", "generator"})


class Deliverable(db.Model):
    """
    Business deliverable produced by an agent and signed off by two parties.

    The two approval flags are independent: either actor can flip its own
    flag, and a rejection by either one sets status to "rejected" without
    touching the other actor's flag. Only a fresh generation clears both.
    """

    __tablename__ = "deliverables"

    id = db.Column(db.Integer, primary_key=True)
    phase_id = db.Column(
        db.Integer, db.ForeignKey("phases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    deliverable_type = db.Column(db.String(60), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | in_progress | review | approved | rejected",
    )

    # Dual approval
    reviewer_approved = db.Column(db.Boolean, nullable=False, default=False)
    owner_approved = db.Column(db.Boolean, nullable=False, default=False)
    quality_score = db.Column(
        db.Float, nullable=True,
        comment="Latest automated reviewer score (1-10)",
    )

    # Generated artifacts
    generated_content = db.Column(db.JSON, nullable=True)
    citations = db.Column(db.JSON, nullable=False, default=list)
    screenshots = db.Column(db.JSON, nullable=False, default=list)
    version = db.Column(
        db.Integer, nullable=False, default=0,
        comment="Incremented on every generation",
    )

    # Assignment
    assigned_team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    assigned_member_id = db.Column(
        db.Integer, db.ForeignKey("team_members.id", ondelete="SET NULL"),
        nullable=True,
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
            "status IN ('pending','in_progress','review','approved','rejected')",
            name="ck_deliverable_status",
        ),
    )

    # ── Relationships ────────────────────────────────────────────────────
    feedback_history = db.relationship(
        "DeliverableFeedback", backref="deliverable", lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="DeliverableFeedback.id",
    )
    assigned_member = db.relationship("TeamMember", foreign_keys=[assigned_member_id])

    @property
    def is_fully_approved(self):
        return bool(self.reviewer_approved and self.owner_approved)

    def to_dict(self, include_feedback=False):
        result = {
            "id": self.id,
            "phase_id": self.phase_id,
            "deliverable_type": self.deliverable_type,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "reviewer_approved": self.reviewer_approved,
            "owner_approved": self.owner_approved,
            "fully_approved": self.is_fully_approved,
            "quality_score": self.quality_score,
            "generated_content": self.generated_content,
            "citations": self.citations or [],
            "screenshots": self.screenshots or [],
            "version": self.version,
            "assigned_team_id": self.assigned_team_id,
            "assigned_member_id": self.assigned_member_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_feedback:
            result["feedback_history"] = [f.to_dict() for f in self.feedback_history]
        return result

    def __repr__(self):
        return f"<Deliverable {self.id}: {self.name} [{self.status}]>"


class DeliverableFeedback(db.Model):
    """
    Immutable feedback entry for a deliverable.

    Business rules:
    - Rows are never updated or deleted; the trail is append-only.
    - ``approved`` is None for generator entries (regeneration context),
      True/False for approval verdicts.
    """

    __tablename__ = "deliverable_feedback"

    id = db.Column(db.Integer, primary_key=True)
    deliverable_id = db.Column(
        db.Integer, db.ForeignKey("deliverables.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    actor = db.Column(
        db.String(20), nullable=False,
        comment="reviewer | owner | generator",
    )
    comment = db.Column(db.Text, nullable=True)
    approved = db.Column(db.Boolean, nullable=True)
    deliverable_version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "deliverable_id": self.deliverable_id,
            "actor": self.actor,
            "comment": self.comment,
            "approved": self.approved,
            "deliverable_version": self.deliverable_version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<DeliverableFeedback #{self.id} {self.actor} d={self.deliverable_id}>"
