"""
Field response payloads.

A filled field arrives with a payload whose shape depends on the field's
semantic type. Both the device queue and the server store it as the triple
(value_text, value_number, value_json); this module owns that mapping and the
reverse readers used by the evaluators.

    number            12.5 | {"subtype": "monetario", "number": 12.5}
    rating            4
    yes_no            "sim" | {"answer": "nao", "comment": "..."}
    text / dropdown   "Ruim"
    checkbox_multiple ["luvas", "touca"]
    signature         {"dataUrl": "data:image/png;base64,...", "timestamp": "..."}
    gps               {"latitude": -8.1, "longitude": -34.9, "accuracy": 12, "timestamp": "..."}
    photo             ["https://.../1.jpg", "https://.../2.jpg"]
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

NUMBER_SUBTYPES = {"monetario", "quantidade", "decimal", "porcentagem"}


@dataclass
class FieldResponse:
    """One answered field in storage form."""

    field_id: int
    value_text: str | None = None
    value_number: float | None = None
    value_json: Any = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FieldResponse":
        return cls(
            field_id=int(data["field_id"]),
            value_text=data.get("value_text"),
            value_number=data.get("value_number"),
            value_json=data.get("value_json"),
        )


@dataclass
class SectionProgress:
    """Per-section progress of a sectioned checklist."""

    section_id: int
    status: str = "pendente"
    completed_at: str | None = None
    responses: list[FieldResponse] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "section_id": self.section_id,
            "status": self.status,
            "completed_at": self.completed_at,
            "responses": [r.to_dict() for r in self.responses],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SectionProgress":
        return cls(
            section_id=int(data["section_id"]),
            status=data.get("status", "pendente"),
            completed_at=data.get("completed_at"),
            responses=[FieldResponse.from_dict(r) for r in data.get("responses", [])],
        )


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def build_field_response(field_id: int, field_type: str, value: Any) -> FieldResponse | None:
    """Normalize a typed payload into storage form. Returns None for no answer."""
    if value is None:
        return None

    if field_type == "number":
        if isinstance(value, dict) and "number" in value:
            subtype = value.get("subtype")
            return FieldResponse(field_id, value_number=_to_float(value["number"]),
                                 value_json={"subtype": subtype} if subtype else None)
        return FieldResponse(field_id, value_number=_to_float(value))

    if field_type in ("rating", "calculated"):
        return FieldResponse(field_id, value_number=_to_float(value))

    if field_type == "yes_no":
        if isinstance(value, dict):
            return FieldResponse(field_id, value_text=value.get("answer"), value_json=value)
        return FieldResponse(field_id, value_text=str(value))

    if field_type in ("checkbox_multiple", "photo"):
        items = list(value) if isinstance(value, (list, tuple)) else [value]
        return FieldResponse(field_id, value_json=items)

    if field_type in ("signature", "gps"):
        return FieldResponse(field_id, value_json=value)

    return FieldResponse(field_id, value_text=str(value))


# ── Readers ──────────────────────────────────────────────────────────────────

def read_text(response) -> str:
    return response.value_text or ""


def read_yes_no(response) -> str | None:
    """The nested ``answer`` key wins over the flat text value."""
    if isinstance(response.value_json, dict):
        answer = response.value_json.get("answer")
        if answer:
            return answer
    return response.value_text or None


def read_selected(response) -> list[str]:
    if isinstance(response.value_json, list):
        return [str(v) for v in response.value_json]
    if response.value_text:
        try:
            parsed = json.loads(response.value_text)
        except ValueError:
            return []
        if isinstance(parsed, list):
            return [str(v) for v in parsed]
    return []


def read_decimal(response) -> Decimal | None:
    """Numeric value of a response as an exact Decimal, falling back to text."""
    raw = response.value_number
    if raw is None:
        raw = (response.value_text or "").strip().replace(" ", "")
        if not raw:
            return None
        if "," in raw:
            # pt-BR: "1.234,56"
            raw = raw.replace(".", "").replace(",", ".")
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    return value if value.is_finite() else None


def read_document_number(response) -> str:
    if response.value_text:
        return response.value_text.strip()
    if response.value_number is not None:
        number = response.value_number
        if float(number).is_integer():
            return str(int(number))
        return str(number)
    return ""


def display_value(field_type: str, response) -> str:
    """Offending value as shown to people (stored on the action plan)."""
    if field_type == "yes_no":
        return read_yes_no(response) or ""
    if field_type in ("number", "rating"):
        if response.value_number is None:
            return ""
        number = response.value_number
        return str(int(number)) if float(number).is_integer() else str(number)
    if field_type == "checkbox_multiple":
        if isinstance(response.value_json, list):
            return ", ".join(str(v) for v in response.value_json)
        return response.value_text or ""
    return response.value_text or ""
