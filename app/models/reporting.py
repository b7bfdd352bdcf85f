"""
AI Company Workflow Engine
Consolidated phase report model.

Models:
    - ConsolidatedReport: roll-up of a completed phase's approved deliverables
"""

from datetime import datetime, timezone

from app.models import db


SUMMARY_SOURCES = {"ai", "template"}


class ConsolidatedReport(db.Model):
    """
    One report per phase.

    Re-compiling a phase overwrites the existing row instead of inserting a
    second one (unique phase_id).
    """

    __tablename__ = "consolidated_reports"

    id = db.Column(db.Integer, primary_key=True)
    phase_id = db.Column(
        db.Integer, db.ForeignKey("phases.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    executive_summary = db.Column(db.Text, nullable=False, default="")
    summary_source = db.Column(
        db.String(20), nullable=False, default="ai",
        comment="ai | template",
    )
    agent_work_summaries = db.Column(
        db.JSON, nullable=False, default=list,
        comment="[{deliverable_id, name, agent_id, status, version, content}]",
    )
    citations = db.Column(db.JSON, nullable=False, default=list)
    screenshots = db.Column(db.JSON, nullable=False, default=list)
    metrics = db.Column(
        db.JSON, nullable=False, default=dict,
        comment="{total_deliverables, approved_deliverables, average_quality_score, ...}",
    )

    compiled_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
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

    def to_dict(self):
        return {
            "id": self.id,
            "phase_id": self.phase_id,
            "project_id": self.project_id,
            "executive_summary": self.executive_summary,
            "summary_source": self.summary_source,
            "agent_work_summaries": self.agent_work_summaries or [],
            "citations": self.citations or [],
            "screenshots": self.screenshots or [],
            "metrics": self.metrics or {},
            "compiled_at": self.compiled_at.isoformat() if self.compiled_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ConsolidatedReport {self.id}: phase={self.phase_id}>"
