"""
StoreCheck
Organisation models.

Models:
    - Store: a retail unit
    - Sector: a department inside a store (receiving, kitchen, ...)
    - JobFunction: the user-level "function" attribute used to pick the
      reconciliation leg (e.g. "Estoquista", "Aprendiz")
    - User: staff member filling checklists
    - UserStore: per-store assignment with an optional sector override
"""

from datetime import datetime, timezone

from storecheck.models import db


class Store(db.Model):
    """Retail store."""

    __tablename__ = "stores"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    sectors = db.relationship("Sector", backref="store", lazy="dynamic", cascade="all, delete-orphan")

    def to_dict(self):
        return {"id": self.id, "name": self.name, "is_active": self.is_active}

    def __repr__(self):
        return f"<Store {self.id}: {self.name}>"


class Sector(db.Model):
    """Department of a store."""

    __tablename__ = "sectors"

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(
        db.Integer, db.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(150), nullable=False)

    def to_dict(self):
        return {"id": self.id, "store_id": self.store_id, "name": self.name}

    def __repr__(self):
        return f"<Sector {self.id}: {self.name}>"


class JobFunction(db.Model):
    """Job function (cargo) assigned to users."""

    __tablename__ = "job_functions"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)

    def __repr__(self):
        return f"<JobFunction {self.name}>"


class User(db.Model):
    """Staff member. Authentication lives outside this service."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=True, index=True)
    is_admin = db.Column(db.Boolean, default=False)
    is_active = db.Column(db.Boolean, default=True)
    function_id = db.Column(
        db.Integer, db.ForeignKey("job_functions.id", ondelete="SET NULL"), nullable=True,
    )
    sector_id = db.Column(
        db.Integer, db.ForeignKey("sectors.id", ondelete="SET NULL"), nullable=True,
        comment="Default sector when no per-store assignment exists",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    function = db.relationship("JobFunction")

    def to_dict(self):
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "is_admin": self.is_admin,
            "is_active": self.is_active,
            "function": self.function.name if self.function else None,
            "sector_id": self.sector_id,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.full_name}>"


class UserStore(db.Model):
    """Assignment of a user to a store, optionally pinned to a sector."""

    __tablename__ = "user_stores"
    __table_args__ = (
        db.UniqueConstraint("user_id", "store_id", name="uq_user_store"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    sector_id = db.Column(db.Integer, db.ForeignKey("sectors.id", ondelete="SET NULL"), nullable=True)

    def __repr__(self):
        return f"<UserStore user={self.user_id} store={self.store_id} sector={self.sector_id}>"
