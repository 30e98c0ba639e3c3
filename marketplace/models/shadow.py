"""
Shadow-store domain models.

Models:
    - ShadowProject:       local copy of a project whose write failed on the adapter
    - ShadowMilestone:     local copy of a milestone (ordered within its project)
    - ShadowScopeComment:  consultant comment on a submitted scope + client response

Architecture:
    ShadowProject ──1:N──▶ ShadowMilestone
    ShadowProject ──1:N──▶ ShadowScopeComment

Unlike the adapter, the ``state`` columns hold workflow states directly
(``ProjectState`` / ``MilestoneState`` values), not the adapter's raw
vocabulary. ``external_id`` links a row to the adapter's project address or
milestone id; rows created while the adapter was down have none.
"""

from datetime import datetime, timezone

from marketplace.core.state import MilestoneState, ProjectState
from marketplace.models import db


PROJECT_STATES = {s.value for s in ProjectState}
MILESTONE_STATES = {s.value for s in MilestoneState}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class ShadowProject(db.Model):
    """Project row written by the fallback path."""

    __tablename__ = "shadow_projects"

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.String(128), nullable=True, unique=True, index=True)
    title = db.Column(db.String(255), nullable=True)
    summary = db.Column(db.Text, nullable=True)
    description = db.Column(db.Text, nullable=True)
    url = db.Column(db.String(500), nullable=True)
    budget = db.Column(db.String(50), nullable=True, comment="Budget reference")
    delivery_time = db.Column(db.String(50), nullable=True, comment="Delivery-time reference")
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    state = db.Column(
        db.String(40), nullable=True,
        comment="ProjectState value; NULL until the proposal is published",
    )
    client_id = db.Column(db.String(64), nullable=True, index=True)
    consultant_id = db.Column(db.String(64), nullable=True, index=True)
    proposal_rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=_utcnow, onupdate=_utcnow,
    )

    milestones = db.relationship(
        "ShadowMilestone", backref="project", lazy="select",
        cascade="all, delete-orphan",
        order_by="ShadowMilestone.display_order",
    )
    comments = db.relationship(
        "ShadowScopeComment", backref="project", lazy="select",
        cascade="all, delete-orphan",
        order_by="ShadowScopeComment.id.desc()",
    )

    def to_dict(self, include_milestones: bool = True) -> dict:
        """Serialise with the application's camelCase view keys."""
        result = {
            "id": self.id,
            "externalId": self.external_id,
            "title": self.title,
            "summary": self.summary,
            "description": self.description,
            "url": self.url,
            "budget": self.budget,
            "deliveryTime": self.delivery_time,
            "deliveryDate": _iso(self.delivery_date),
            "state": self.state,
            "clientId": self.client_id,
            "consultantId": self.consultant_id,
            "proposalRejectionReason": self.proposal_rejection_reason,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if include_milestones:
            result["milestones"] = [m.to_dict() for m in self.milestones]
            result["comments"] = [c.to_dict() for c in self.comments]
        return result

    def __repr__(self) -> str:
        return f"<ShadowProject {self.id}: {self.external_id} [{self.state}]>"


class ShadowMilestone(db.Model):
    """Milestone row written by the fallback path."""

    __tablename__ = "shadow_milestones"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("shadow_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    external_id = db.Column(db.String(128), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    budget = db.Column(db.Float, nullable=True)
    delivery_time = db.Column(db.String(50), nullable=True)
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    state = db.Column(db.String(40), nullable=True, comment="MilestoneState value")
    developer_id = db.Column(db.String(64), nullable=True)
    documentation = db.Column(db.Text, nullable=True)
    links = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=_utcnow, onupdate=_utcnow,
    )

    __table_args__ = (
        db.UniqueConstraint("project_id", "external_id", name="uq_shadow_milestones_project_external"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "externalId": self.external_id,
            "projectId": self.project_id,
            "title": self.title,
            "description": self.description,
            "budget": self.budget,
            "deliveryTime": self.delivery_time,
            "deliveryDate": _iso(self.delivery_date),
            "displayOrder": self.display_order,
            "state": self.state,
            "developerId": self.developer_id,
            "documentation": self.documentation,
            "links": self.links,
        }

    def __repr__(self) -> str:
        return f"<ShadowMilestone {self.id}: {self.title!r} [{self.state}]>"


class ShadowScopeComment(db.Model):
    """Consultant remark attached to a scope submission, answered by the client."""

    __tablename__ = "shadow_scope_comments"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("shadow_projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    consultant_comment = db.Column(db.Text, nullable=True)
    client_response = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "consultantComment": self.consultant_comment,
            "clientResponse": self.client_response,
            "createdAt": _iso(self.created_at),
        }
