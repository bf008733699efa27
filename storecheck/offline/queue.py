"""
Device-side submission queue.

Checklists filled without connectivity live here until the server confirms
them. The queue owns its own SQLite file through plain SQLAlchemy, so it
runs without a Flask app.

    queue = LocalSubmissionQueue("sqlite:///offline.db")
    local_id = queue.enqueue(ChecklistSubmission(template_id=1, store_id=2, user_id=3))
    queue.update_field(local_id, None, 10, FieldResponse(10, value_text="12345"))
    queue.flush()

Field edits are debounced: ``update_field`` only records the edit in memory
and (re)arms a timer; after ``debounce_seconds`` of inactivity the edits are
written. ``flush()`` writes them immediately and must run before anything
reads the persisted copy for finalize.

Synced entries are deleted, never kept with a "synced" status.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text, create_engine, func, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from storecheck.core.field_values import FieldResponse, SectionProgress

logger = logging.getLogger(__name__)

QUEUE_STATUSES = ("pending", "syncing", "failed")
DRAINABLE_STATUSES = ("pending", "failed")
DEFAULT_DEBOUNCE_SECONDS = 1.5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class LocalSubmission(Base):
    """Row form of a not-yet-confirmed checklist."""

    __tablename__ = "local_submissions"

    local_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    template_id: Mapped[int] = mapped_column(Integer)
    store_id: Mapped[int] = mapped_column(Integer)
    sector_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_id: Mapped[int] = mapped_column(Integer)
    responses: Mapped[list] = mapped_column(JSON, default=list)
    sections: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


@dataclass
class ChecklistSubmission:
    """A checklist being filled on the device."""

    template_id: int
    store_id: int
    user_id: int
    sector_id: int | None = None
    responses: list[FieldResponse] = field(default_factory=list)
    sections: list[SectionProgress] = field(default_factory=list)
    local_id: str | None = None
    status: str = "pending"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    sync_error: str | None = None

    def all_responses(self) -> list[FieldResponse]:
        """Top-level and per-section responses, one per field (sections win)."""
        merged: dict[int, FieldResponse] = {r.field_id: r for r in self.responses}
        for section in self.sections:
            for r in section.responses:
                merged[r.field_id] = r
        return list(merged.values())

    def to_payload(self) -> dict[str, Any]:
        """Body for ``POST /api/v1/checklists``."""
        return {
            "client_submission_id": self.local_id,
            "template_id": self.template_id,
            "store_id": self.store_id,
            "sector_id": self.sector_id,
            "user_id": self.user_id,
            "source": "offline",
            "started_at": self.created_at.isoformat() if self.created_at else None,
            "responses": [r.to_dict() for r in self.all_responses()],
        }

    @classmethod
    def from_row(cls, row: LocalSubmission) -> "ChecklistSubmission":
        return cls(
            local_id=row.local_id,
            template_id=row.template_id,
            store_id=row.store_id,
            sector_id=row.sector_id,
            user_id=row.user_id,
            responses=[FieldResponse.from_dict(r) for r in row.responses or []],
            sections=[SectionProgress.from_dict(s) for s in row.sections or []],
            status=row.status,
            created_at=row.created_at,
            updated_at=row.updated_at,
            sync_error=row.sync_error,
        )


def _upsert_response(responses: list[dict], response: FieldResponse) -> list[dict]:
    kept = [r for r in responses if int(r["field_id"]) != response.field_id]
    kept.append(response.to_dict())
    return kept


class LocalSubmissionQueue:
    """Durable FIFO of checklist submissions awaiting server confirmation."""

    def __init__(self, url: str = "sqlite:///storecheck_offline.db",
                 debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS) -> None:
        engine_kwargs: dict[str, Any] = {}
        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
                engine_kwargs["poolclass"] = StaticPool
        self._engine = create_engine(url, **engine_kwargs)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

        self.debounce_seconds = debounce_seconds
        self._edits: dict[str, dict[tuple[int | None, int], FieldResponse]] = {}
        self._edits_lock = threading.RLock()
        self._timer: threading.Timer | None = None

        self._recover_interrupted()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def _recover_interrupted(self) -> None:
        """Entries left in ``syncing`` by a crashed drain become drainable again."""
        with self._session_factory() as session:
            rows = session.scalars(select(LocalSubmission).where(LocalSubmission.status == "syncing")).all()
            for row in rows:
                row.status = "pending"
            if rows:
                session.commit()
                logger.info("Recovered %d interrupted submission(s)", len(rows))

    def close(self) -> None:
        self.flush()
        self._engine.dispose()

    # ── Writes ────────────────────────────────────────────────────────────

    def enqueue(self, submission: ChecklistSubmission) -> str:
        """Store a new submission with status pending. Returns its local id."""
        local_id = submission.local_id or uuid.uuid4().hex
        now = _utcnow()
        row = LocalSubmission(
            local_id=local_id,
            template_id=submission.template_id,
            store_id=submission.store_id,
            sector_id=submission.sector_id,
            user_id=submission.user_id,
            responses=[r.to_dict() for r in submission.responses],
            sections=[s.to_dict() for s in submission.sections],
            status="pending",
            created_at=submission.created_at or now,
            updated_at=now,
        )
        with self._session_factory() as session:
            session.add(row)
            session.commit()
        submission.local_id = local_id
        logger.info("Submission queued", extra={"local_id": local_id})
        return local_id

    def update_field(self, local_id: str, section_id: int | None, field_id: int,
                     value: FieldResponse | dict[str, Any]) -> None:
        """Record one field edit; it is persisted after the debounce window."""
        if isinstance(value, dict):
            value = FieldResponse.from_dict({"field_id": field_id, **value})
        elif value.field_id != field_id:
            value = FieldResponse(field_id, value.value_text, value.value_number, value.value_json)

        with self._edits_lock:
            self._edits.setdefault(local_id, {})[(section_id, field_id)] = value
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_seconds, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def has_unsaved_edits(self) -> bool:
        with self._edits_lock:
            return bool(self._edits)

    def flush(self) -> int:
        """Persist every buffered edit now. Returns the number of submissions touched."""
        with self._edits_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            edits, self._edits = self._edits, {}

        if not edits:
            return 0

        touched = 0
        with self._session_factory() as session:
            for local_id, changes in edits.items():
                row = session.get(LocalSubmission, local_id)
                if row is None:
                    logger.warning("Dropping %d edit(s) for unknown submission", len(changes),
                                   extra={"local_id": local_id})
                    continue
                responses = list(row.responses or [])
                sections = [SectionProgress.from_dict(s) for s in row.sections or []]
                for (section_id, _field_id), response in changes.items():
                    if section_id is None:
                        responses = _upsert_response(responses, response)
                        continue
                    section = next((s for s in sections if s.section_id == section_id), None)
                    if section is None:
                        section = SectionProgress(section_id=section_id)
                        sections.append(section)
                    section.responses = [r for r in section.responses if r.field_id != response.field_id]
                    section.responses.append(response)
                row.responses = responses
                row.sections = [s.to_dict() for s in sections]
                row.updated_at = _utcnow()
                touched += 1
            session.commit()
        logger.debug("Flushed edits for %d submission(s)", touched)
        return touched

    def complete_section(self, local_id: str, section_id: int) -> None:
        """Mark one section of a sectioned checklist as done."""
        self.flush()
        with self._session_factory() as session:
            row = session.get(LocalSubmission, local_id)
            if row is None:
                raise KeyError(local_id)
            sections = [SectionProgress.from_dict(s) for s in row.sections or []]
            section = next((s for s in sections if s.section_id == section_id), None)
            if section is None:
                section = SectionProgress(section_id=section_id)
                sections.append(section)
            section.status = "concluido"
            section.completed_at = _utcnow().isoformat()
            row.sections = [s.to_dict() for s in sections]
            row.updated_at = _utcnow()
            session.commit()

    def mark_status(self, local_id: str, status: str, error: str | None = None) -> None:
        if status not in QUEUE_STATUSES:
            raise ValueError(f"Invalid queue status: {status}")
        with self._session_factory() as session:
            row = session.get(LocalSubmission, local_id)
            if row is None:
                raise KeyError(local_id)
            row.status = status
            row.sync_error = error if status == "failed" else None
            row.updated_at = _utcnow()
            session.commit()

    def mark_synced(self, local_id: str) -> None:
        """The server confirmed the submission: delete the local copy."""
        with self._edits_lock:
            self._edits.pop(local_id, None)
        with self._session_factory() as session:
            row = session.get(LocalSubmission, local_id)
            if row is not None:
                session.delete(row)
                session.commit()
        logger.info("Submission synced and removed", extra={"local_id": local_id})

    # ── Reads ─────────────────────────────────────────────────────────────

    def get(self, local_id: str) -> ChecklistSubmission | None:
        with self._session_factory() as session:
            row = session.get(LocalSubmission, local_id)
            return ChecklistSubmission.from_row(row) if row else None

    def pending_count(self) -> int:
        """Entries not yet confirmed by the server (any status)."""
        with self._session_factory() as session:
            return session.scalar(select(func.count()).select_from(LocalSubmission)) or 0

    def list_drainable(self) -> list[ChecklistSubmission]:
        """Pending and failed entries, oldest first."""
        with self._session_factory() as session:
            rows = session.scalars(
                select(LocalSubmission)
                .where(LocalSubmission.status.in_(DRAINABLE_STATUSES))
                .order_by(LocalSubmission.created_at, LocalSubmission.local_id)
            ).all()
            return [ChecklistSubmission.from_row(r) for r in rows]
