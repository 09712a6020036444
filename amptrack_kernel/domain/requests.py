"""
Typed request objects for document creation and update.

Responsibility:
    Validate request shape at the kernel boundary.  Each document type has an
    explicit create request and an explicit update request enumerating
    exactly the fields a caller may change; ``from_mapping()`` builds them
    from a loose request body, ignoring keys outside the allow-list and
    treating ``""`` as ``None``.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - title is 1..255 characters after trimming.
    - description is at most 1000 characters.
    - dates parse as ISO ``YYYY-MM-DD``; ids parse as UUIDs.
    - Line items and tax rate are validated by the computation engine when
      totals are derived, not here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, fields
from datetime import date, datetime
from typing import Any, ClassVar, Mapping, Sequence
from uuid import UUID

from amptrack_kernel.exceptions import ValidationError

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

TITLE_MAX = 255
DESCRIPTION_MAX = 1000
PROJECT_NAME_MAX = 200
SENDER_NAME_MAX = 100


class _Unset:
    """Marker for "field not supplied" in update requests."""

    _instance: ClassVar[_Unset | None] = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------


def _blank_to_none(value: Any) -> Any:
    return None if value == "" else value


def clean_title(value: Any) -> str:
    text = value.strip() if isinstance(value, str) else ""
    if not 1 <= len(text) <= TITLE_MAX:
        raise ValidationError(
            f"Title must be between 1 and {TITLE_MAX} characters", field="title"
        )
    return text


def clean_text(value: Any, field_name: str, max_length: int | None = None) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string", field=field_name)
    text = value.strip()
    if max_length is not None and len(text) > max_length:
        raise ValidationError(
            f"{field_name} must not exceed {max_length} characters", field=field_name
        )
    return text


def validate_email(value: Any, field_name: str = "email") -> str:
    """Return the trimmed address or raise ValidationError."""
    text = value.strip() if isinstance(value, str) else ""
    if not _EMAIL_RE.match(text):
        raise ValidationError("Valid email address is required", field=field_name)
    return text


def parse_date(value: Any, field_name: str) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise ValidationError(f"{field_name} must be a date (YYYY-MM-DD)", field=field_name)


def parse_uuid(value: Any, field_name: str) -> UUID | None:
    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"{field_name} must be a valid id", field=field_name) from None


# ---------------------------------------------------------------------------
# Customer snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CustomerSnapshot:
    """Customer fields copied onto a document at creation time."""

    customer_id: str | None = None
    name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""

    def __post_init__(self) -> None:
        if self.email and not _EMAIL_RE.match(self.email):
            raise ValidationError("Customer email is not valid", field="customer_email")

    @property
    def is_empty(self) -> bool:
        return not (self.customer_id or self.name or self.email or self.phone or self.address)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> CustomerSnapshot:
        raw_id = _blank_to_none(data.get("customer_id"))
        return cls(
            customer_id=None if raw_id is None else str(raw_id),
            name=clean_text(_blank_to_none(data.get("customer_name")), "customer_name", 255),
            email=clean_text(_blank_to_none(data.get("customer_email")), "customer_email", 255),
            phone=clean_text(_blank_to_none(data.get("customer_phone")), "customer_phone", 50),
            address=clean_text(_blank_to_none(data.get("customer_address")), "customer_address", 500),
        )


# ---------------------------------------------------------------------------
# Create requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentCreate:
    """Fields shared by every create request."""

    title: str
    items: Sequence[Any]
    description: str = ""
    notes: str = ""
    customer: CustomerSnapshot | None = None
    tax_rate: Any = 0
    project_id: UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "title", clean_title(self.title))
        object.__setattr__(
            self, "description", clean_text(self.description, "description", DESCRIPTION_MAX)
        )
        object.__setattr__(self, "notes", clean_text(self.notes, "notes"))
        object.__setattr__(self, "items", tuple(self.items or ()))
        object.__setattr__(self, "project_id", parse_uuid(self.project_id, "project_id"))

    @classmethod
    def _common_kwargs(cls, data: Mapping[str, Any]) -> dict[str, Any]:
        tax_rate = _blank_to_none(data.get("tax_rate"))
        return {
            "title": data.get("title"),
            "items": data.get("items") or (),
            "description": _blank_to_none(data.get("description")),
            "notes": _blank_to_none(data.get("notes")),
            "customer": CustomerSnapshot.from_mapping(data),
            "tax_rate": 0 if tax_rate is None else tax_rate,
            "project_id": _blank_to_none(data.get("project_id")),
        }


@dataclass(frozen=True)
class EstimateCreate(DocumentCreate):
    valid_until: date | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "valid_until", parse_date(self.valid_until, "valid_until"))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> EstimateCreate:
        return cls(
            **cls._common_kwargs(data),
            valid_until=_blank_to_none(data.get("valid_until")),
        )


@dataclass(frozen=True)
class InvoiceCreate(DocumentCreate):
    due_date: date | None = None
    estimate_id: UUID | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "due_date", parse_date(self.due_date, "due_date"))
        object.__setattr__(self, "estimate_id", parse_uuid(self.estimate_id, "estimate_id"))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> InvoiceCreate:
        return cls(
            **cls._common_kwargs(data),
            due_date=_blank_to_none(data.get("due_date")),
            estimate_id=_blank_to_none(data.get("estimate_id")),
        )


@dataclass(frozen=True)
class ChangeOrderCreate(DocumentCreate):
    """Change orders always belong to a project."""

    reason: str = ""
    justification: str = ""
    requested_date: date | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.project_id is None:
            raise ValidationError("project_id is required for change orders", field="project_id")
        object.__setattr__(self, "reason", clean_text(self.reason, "reason", DESCRIPTION_MAX))
        object.__setattr__(
            self, "justification", clean_text(self.justification, "justification", DESCRIPTION_MAX)
        )
        object.__setattr__(
            self, "requested_date", parse_date(self.requested_date, "requested_date")
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ChangeOrderCreate:
        return cls(
            **cls._common_kwargs(data),
            reason=_blank_to_none(data.get("reason")),
            justification=_blank_to_none(data.get("justification")),
            requested_date=_blank_to_none(data.get("requested_date")),
        )


@dataclass(frozen=True)
class ProjectCreate:
    name: str
    description: str = ""

    def __post_init__(self) -> None:
        name = self.name.strip() if isinstance(self.name, str) else ""
        if not 1 <= len(name) <= PROJECT_NAME_MAX:
            raise ValidationError(
                f"Project name must be between 1 and {PROJECT_NAME_MAX} characters",
                field="name",
            )
        object.__setattr__(self, "name", name)
        object.__setattr__(
            self, "description", clean_text(self.description, "description", DESCRIPTION_MAX)
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ProjectCreate:
        return cls(
            name=data.get("project_name", data.get("name")),
            description=_blank_to_none(data.get("project_description", data.get("description"))),
        )


# ---------------------------------------------------------------------------
# Update requests
# ---------------------------------------------------------------------------

_DATE_FIELDS = frozenset({"valid_until", "due_date", "paid_date", "requested_date", "approved_date"})
_TEXT_LIMITS = {
    "description": DESCRIPTION_MAX,
    "notes": None,
    "customer_name": 255,
    "customer_email": 255,
    "customer_phone": 50,
    "customer_address": 500,
    "reason": DESCRIPTION_MAX,
    "justification": DESCRIPTION_MAX,
}


@dataclass(frozen=True)
class DocumentUpdate:
    """
    Base for per-type update requests.

    Contract:
        A field left as UNSET is not touched.  Text fields set to None are
        stored as "", dates set to None are cleared.  ``status`` and
        ``tax_rate`` are validated by the status machine and the computation
        engine when the update is applied.
    """

    title: Any = UNSET
    description: Any = UNSET
    status: Any = UNSET
    customer_name: Any = UNSET
    customer_email: Any = UNSET
    customer_phone: Any = UNSET
    customer_address: Any = UNSET
    tax_rate: Any = UNSET
    notes: Any = UNSET

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if value is UNSET:
                continue
            object.__setattr__(self, f.name, self._clean(f.name, value))

    @staticmethod
    def _clean(name: str, value: Any) -> Any:
        if name == "title":
            return clean_title(value)
        if name in _DATE_FIELDS:
            return parse_date(value, name)
        if name in _TEXT_LIMITS:
            text = clean_text(value, name, _TEXT_LIMITS[name])
            if name == "customer_email" and text and not _EMAIL_RE.match(text):
                raise ValidationError("Customer email is not valid", field=name)
            return text
        if name == "customer_id":
            return None if value is None else str(value)
        if name == "status" and value is None:
            raise ValidationError("status must not be empty", field="status")
        return value

    @classmethod
    def allowed_fields(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]):
        """Build from a request body; unknown keys are ignored, "" is None."""
        allowed = cls.allowed_fields()
        kwargs = {
            key: _blank_to_none(value)
            for key, value in data.items()
            if key in allowed
        }
        return cls(**kwargs)

    def changes(self) -> dict[str, Any]:
        """Supplied fields only, in declaration order."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    @property
    def is_empty(self) -> bool:
        return not self.changes()


@dataclass(frozen=True)
class EstimateUpdate(DocumentUpdate):
    customer_id: Any = UNSET
    valid_until: Any = UNSET


@dataclass(frozen=True)
class InvoiceUpdate(DocumentUpdate):
    customer_id: Any = UNSET
    due_date: Any = UNSET
    paid_date: Any = UNSET


@dataclass(frozen=True)
class ChangeOrderUpdate(DocumentUpdate):
    reason: Any = UNSET
    justification: Any = UNSET
    requested_date: Any = UNSET
    approved_date: Any = UNSET


UPDATE_TYPES: dict[str, type[DocumentUpdate]] = {
    "estimate": EstimateUpdate,
    "invoice": InvoiceUpdate,
    "change_order": ChangeOrderUpdate,
}

CREATE_TYPES: dict[str, type[DocumentCreate]] = {
    "estimate": EstimateCreate,
    "invoice": InvoiceCreate,
    "change_order": ChangeOrderCreate,
}


def update_request_for(document_type: Any, data: Mapping[str, Any]) -> DocumentUpdate:
    """Build the update request matching ``document_type``."""
    key = getattr(document_type, "value", document_type)
    try:
        update_cls = UPDATE_TYPES[key]
    except KeyError:
        raise ValidationError(f"Unknown document type: {key}", field="document_type") from None
    return update_cls.from_mapping(data)
