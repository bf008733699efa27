"""
StoreCheck
Cross-validation (reconciliation) model.

One row pairs the primary and secondary legs that describe the same physical
document. Values are stored as Numeric so the 0.01 tolerance comparison is
done on exact decimals.
"""

from datetime import datetime, timezone

from storecheck.models import db


# ── Constants ────────────────────────────────────────────────────────────────

VALIDATION_STATUSES = {"pending", "matched_ok", "matched_mismatch", "siblings_linked", "expired"}
TERMINAL_STATUSES = {"matched_ok", "matched_mismatch", "siblings_linked", "expired"}
LEGS = ("primary", "secondary")


class CrossValidation(db.Model):
    """Two-legged reconciliation record."""

    __tablename__ = "cross_validations"
    __table_args__ = (
        db.Index("ix_cross_validations_store_doc", "store_id", "document_number"),
        db.Index("ix_cross_validations_status_created", "status", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False)
    sector_id = db.Column(db.Integer, db.ForeignKey("sectors.id", ondelete="SET NULL"), nullable=True)
    document_number = db.Column(db.String(100), nullable=False)

    primary_checklist_id = db.Column(
        db.Integer, db.ForeignKey("checklists.id", ondelete="SET NULL"), nullable=True,
    )
    primary_value = db.Column(db.Numeric(14, 4), nullable=True)
    secondary_checklist_id = db.Column(
        db.Integer, db.ForeignKey("checklists.id", ondelete="SET NULL"), nullable=True,
    )
    secondary_value = db.Column(db.Numeric(14, 4), nullable=True)

    difference = db.Column(db.Numeric(14, 4), nullable=True)
    status = db.Column(db.String(30), default="pending", nullable=False)
    linked_validation_id = db.Column(
        db.Integer, db.ForeignKey("cross_validations.id", ondelete="SET NULL"), nullable=True,
    )
    match_reason = db.Column(db.String(300), nullable=True)
    is_primary = db.Column(db.Boolean, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def leg_checklist_id(self, leg):
        return getattr(self, f"{leg}_checklist_id")

    def leg_value(self, leg):
        return getattr(self, f"{leg}_value")

    def fill_leg(self, leg, checklist_id, value):
        setattr(self, f"{leg}_checklist_id", checklist_id)
        setattr(self, f"{leg}_value", value)

    @property
    def both_legs_filled(self):
        return self.primary_checklist_id is not None and self.secondary_checklist_id is not None

    def to_dict(self):
        return {
            "id": self.id,
            "store_id": self.store_id,
            "sector_id": self.sector_id,
            "document_number": self.document_number,
            "primary_checklist_id": self.primary_checklist_id,
            "primary_value": float(self.primary_value) if self.primary_value is not None else None,
            "secondary_checklist_id": self.secondary_checklist_id,
            "secondary_value": float(self.secondary_value) if self.secondary_value is not None else None,
            "difference": float(self.difference) if self.difference is not None else None,
            "status": self.status,
            "linked_validation_id": self.linked_validation_id,
            "match_reason": self.match_reason,
            "is_primary": self.is_primary,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "validated_at": self.validated_at.isoformat() if self.validated_at else None,
        }

    def __repr__(self):
        return f"<CrossValidation {self.id}: {self.document_number} [{self.status}]>"
