"""
StoreCheck
Checklist domain models.

Models:
    - ChecklistTemplate: a checklist design (receiving, cleaning, ...)
    - TemplateField: one question of a template
    - Checklist: a server-confirmed filled checklist
    - ChecklistResponse: one answer, stored as (value_text, value_number, value_json)
    - ActivityLog: audit trail of checklist lifecycle events
"""

from datetime import datetime, timezone

from storecheck.models import db


# ── Constants ────────────────────────────────────────────────────────────────

FIELD_TYPES = {
    "text", "number", "photo", "dropdown", "signature", "datetime",
    "checkbox_multiple", "gps", "barcode", "calculated", "yes_no", "rating",
}

# Closed set of capability tags used by the reconciliation matcher.
VALIDATION_ROLES = {"document_number", "declared_value"}

CHECKLIST_STATUSES = {"in_progress", "completed"}


class ChecklistTemplate(db.Model):
    """Checklist design."""

    __tablename__ = "checklist_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(30), default="outros",
                         comment="recebimento/limpeza/abertura/fechamento/outros")
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    fields = db.relationship(
        "TemplateField", backref="template", lazy="select",
        order_by="TemplateField.sort_order", cascade="all, delete-orphan",
    )

    def to_dict(self, include_fields=False):
        d = {"id": self.id, "name": self.name, "category": self.category, "is_active": self.is_active}
        if include_fields:
            d["fields"] = [f.to_dict() for f in self.fields]
        return d

    def __repr__(self):
        return f"<ChecklistTemplate {self.id}: {self.name}>"


class TemplateField(db.Model):
    """Question of a template."""

    __tablename__ = "template_fields"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("checklist_templates.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    section_id = db.Column(db.Integer, nullable=True)
    name = db.Column(db.String(300), nullable=False)
    field_type = db.Column(db.String(30), nullable=False)
    options = db.Column(db.JSON, nullable=True)
    validation_role = db.Column(
        db.String(30), nullable=True,
        comment="document_number / declared_value; NULL means keyword fallback",
    )
    sort_order = db.Column(db.Integer, default=0)

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "section_id": self.section_id,
            "name": self.name,
            "field_type": self.field_type,
            "options": self.options,
            "validation_role": self.validation_role,
            "sort_order": self.sort_order,
        }

    def __repr__(self):
        return f"<TemplateField {self.id}: {self.name} ({self.field_type})>"


class Checklist(db.Model):
    """
    Server-confirmed checklist.

    ``client_submission_id`` carries the device-side local id and is unique:
    a retried sync finds the existing row instead of inserting a second one.
    ``evaluated_at`` is stamped once both evaluation passes have run.
    """

    __tablename__ = "checklists"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("checklist_templates.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    sector_id = db.Column(db.Integer, db.ForeignKey("sectors.id", ondelete="SET NULL"), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = db.Column(db.String(20), default="in_progress")
    client_submission_id = db.Column(db.String(64), nullable=True, unique=True,
                                     comment="Idempotency key = local submission id")
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    evaluated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    template = db.relationship("ChecklistTemplate")
    responses = db.relationship(
        "ChecklistResponse", backref="checklist", lazy="select", cascade="all, delete-orphan",
    )

    def to_dict(self, include_responses=False):
        d = {
            "id": self.id,
            "template_id": self.template_id,
            "store_id": self.store_id,
            "sector_id": self.sector_id,
            "created_by": self.created_by,
            "status": self.status,
            "client_submission_id": self.client_submission_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "evaluated_at": self.evaluated_at.isoformat() if self.evaluated_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_responses:
            d["responses"] = [r.to_dict() for r in self.responses]
        return d

    def __repr__(self):
        return f"<Checklist {self.id} [{self.status}]>"


class ChecklistResponse(db.Model):
    """Answer to one template field."""

    __tablename__ = "checklist_responses"
    __table_args__ = (
        db.UniqueConstraint("checklist_id", "field_id", name="uq_response_checklist_field"),
    )

    id = db.Column(db.Integer, primary_key=True)
    checklist_id = db.Column(
        db.Integer, db.ForeignKey("checklists.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    field_id = db.Column(
        db.Integer, db.ForeignKey("template_fields.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    value_text = db.Column(db.Text, nullable=True)
    value_number = db.Column(db.Float, nullable=True)
    value_json = db.Column(db.JSON, nullable=True)
    answered_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "checklist_id": self.checklist_id,
            "field_id": self.field_id,
            "value_text": self.value_text,
            "value_number": self.value_number,
            "value_json": self.value_json,
        }

    def __repr__(self):
        return f"<ChecklistResponse checklist={self.checklist_id} field={self.field_id}>"


class ActivityLog(db.Model):
    """Audit entry for checklist lifecycle events."""

    __tablename__ = "activity_log"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id", ondelete="SET NULL"), nullable=True)
    checklist_id = db.Column(db.Integer, db.ForeignKey("checklists.id", ondelete="CASCADE"), nullable=True)
    action = db.Column(db.String(50), nullable=False)
    details = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<ActivityLog {self.action} checklist={self.checklist_id}>"
