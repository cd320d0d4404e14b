"""
Content record types.

A ContentRecord is a shared envelope (id, status, timestamps) around one
payload variant per resource type. Payloads are validated at the boundary,
when a caller hands data to the access layer; records read back from a store
are parsed leniently so a single bad row never hides the rest of a listing.

Wire format is the flat camelCase JSON object used by the site's API:

    {"id": "17", "title": "Easter service", "date": "2026-04-05",
     "location": "Main hall", "description": "...", "status": "published",
     "createdAt": "...", "updatedAt": "..."}
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar

from .exceptions import RecordValidationError

LOCAL_ID_PREFIX = "local-"

# Envelope keys that never belong to a payload.
ENVELOPE_KEYS = frozenset({"id", "status", "createdAt", "updatedAt"})


class ResourceType(Enum):
    """Kinds of publishable content."""

    ARTICLE = "article"
    EVENT = "event"
    RECORDING = "recording"

    @property
    def route(self) -> str:
        """Collection name used in API paths and fallback store keys."""
        return f"{self.value}s"

    @classmethod
    def parse(cls, value: ResourceType | str) -> ResourceType:
        """Accept an enum member, its value, or its route name."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if text in (member.value, member.route):
                return member
        raise ValueError(f"Unknown resource type: {value!r}")


class ContentStatus(Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def generate_local_id() -> str:
    """Id for a record created while the remote store is unreachable."""
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex[:12]}"


def is_local_id(record_id: str | None) -> bool:
    return bool(record_id) and str(record_id).startswith(LOCAL_ID_PREFIX)


def _wire(name: str) -> dict[str, Any]:
    return {"wire": name}


def _check_iso_date(resource_type: str, name: str, value: str) -> None:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        datetime.fromisoformat(text)
    except ValueError:
        raise RecordValidationError(resource_type, name, "must be an ISO-8601 date") from None


class ContentPayload:
    """Base for the per-type payload variants.

    Subclasses are dataclasses. A field's wire name defaults to its Python
    name; ``metadata={"wire": ...}`` overrides it.
    """

    resource_type: ClassVar[ResourceType]
    required: ClassVar[tuple[str, ...]] = ("title",)
    date_fields: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def wire_names(cls) -> dict[str, str]:
        """Map python attribute name -> wire key."""
        return {f.name: f.metadata.get("wire", f.name) for f in fields(cls)}  # type: ignore[arg-type]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], strict: bool = True) -> ContentPayload:
        """Build a payload from wire data.

        With ``strict`` the payload is validated and unknown keys are
        rejected; otherwise missing fields fall back to defaults (or empty
        strings) and unknown keys are ignored.
        """
        names = cls.wire_names()
        by_wire = {wire: attr for attr, wire in names.items()}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key in ENVELOPE_KEYS:
                continue
            attr = by_wire.get(key)
            if attr is None:
                if strict:
                    raise RecordValidationError(cls.resource_type.value, key, "is not a known field")
                continue
            kwargs[attr] = "" if value is None else value

        if not strict:
            for f in fields(cls):  # type: ignore[arg-type]
                if f.name not in kwargs and f.name in cls.required:
                    kwargs[f.name] = ""

        try:
            payload = cls(**kwargs)
        except TypeError:
            missing = [attr for attr in cls.required if attr not in kwargs]
            field_name = names.get(missing[0], missing[0]) if missing else "payload"
            raise RecordValidationError(cls.resource_type.value, field_name, "is required") from None

        if strict:
            payload.validate()
        return payload

    def to_dict(self) -> dict[str, Any]:
        names = self.wire_names()
        return {names[f.name]: getattr(self, f.name) for f in fields(self)}  # type: ignore[arg-type]

    def validate(self) -> None:
        """Raise RecordValidationError if the payload is not publishable."""
        names = self.wire_names()
        type_name = self.resource_type.value
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if not isinstance(value, str):
                raise RecordValidationError(type_name, names[f.name], "must be a string")
        for attr in self.required:
            if not getattr(self, attr).strip():
                raise RecordValidationError(type_name, names[attr], "is required")
        for attr in self.date_fields:
            value = getattr(self, attr)
            if value:
                _check_iso_date(type_name, names[attr], value)

    def merged(self, changes: Mapping[str, Any]) -> ContentPayload:
        """Return a copy with wire-keyed ``changes`` applied and validated."""
        data = self.to_dict()
        data.update({k: v for k, v in changes.items() if k not in ENVELOPE_KEYS})
        return type(self).from_dict(data, strict=True)


@dataclass
class ArticlePayload(ContentPayload):
    """A blog article."""

    resource_type: ClassVar[ResourceType] = ResourceType.ARTICLE
    required: ClassVar[tuple[str, ...]] = ("title", "content")

    title: str
    content: str
    summary: str = ""
    author: str = "Staff"
    category: str = "General"
    image_url: str = field(default="", metadata=_wire("imageUrl"))


@dataclass
class EventPayload(ContentPayload):
    """A scheduled event."""

    resource_type: ClassVar[ResourceType] = ResourceType.EVENT
    required: ClassVar[tuple[str, ...]] = ("title", "date", "location", "description")
    date_fields: ClassVar[tuple[str, ...]] = ("date",)

    title: str
    date: str
    location: str
    description: str
    image_url: str = field(default="", metadata=_wire("imageUrl"))


@dataclass
class RecordingPayload(ContentPayload):
    """A recorded talk."""

    resource_type: ClassVar[ResourceType] = ResourceType.RECORDING
    required: ClassVar[tuple[str, ...]] = ("title", "speaker", "date")
    date_fields: ClassVar[tuple[str, ...]] = ("date",)

    title: str
    speaker: str
    date: str
    description: str = ""
    video_url: str = field(default="", metadata=_wire("videoUrl"))
    audio_url: str = field(default="", metadata=_wire("audioUrl"))
    thumbnail_url: str = field(default="", metadata=_wire("thumbnailUrl"))


PAYLOAD_TYPES: dict[ResourceType, type[ContentPayload]] = {
    ResourceType.ARTICLE: ArticlePayload,
    ResourceType.EVENT: EventPayload,
    ResourceType.RECORDING: RecordingPayload,
}


def parse_status(resource_type: ResourceType, value: Any) -> ContentStatus:
    if value is None or value == "":
        return ContentStatus.DRAFT
    if isinstance(value, ContentStatus):
        return value
    try:
        return ContentStatus(str(value).lower())
    except ValueError:
        raise RecordValidationError(
            resource_type.value, "status", "must be draft or published"
        ) from None


def parse_payload(
    resource_type: ResourceType | str,
    data: ContentPayload | Mapping[str, Any],
) -> tuple[ContentPayload, ContentStatus]:
    """Validate caller input for a create.

    Returns the typed payload and the requested status (default draft).
    """
    rtype = ResourceType.parse(resource_type)
    payload_cls = PAYLOAD_TYPES[rtype]
    if isinstance(data, ContentPayload):
        if not isinstance(data, payload_cls):
            raise RecordValidationError(
                rtype.value, "payload", f"must be a {payload_cls.__name__}"
            )
        data.validate()
        return data, ContentStatus.DRAFT
    return payload_cls.from_dict(data, strict=True), parse_status(rtype, data.get("status"))


def validate_changes(
    resource_type: ResourceType | str,
    changes: ContentPayload | Mapping[str, Any],
) -> dict[str, Any]:
    """Validate a partial update and return it as wire-keyed data.

    Every key must be a payload field or ``status``; present fields are
    checked the same way a full payload would be.
    """
    rtype = ResourceType.parse(resource_type)
    payload_cls = PAYLOAD_TYPES[rtype]
    if isinstance(changes, ContentPayload):
        parse_payload(rtype, changes)
        return changes.to_dict()

    names = payload_cls.wire_names()
    by_wire = {wire: attr for attr, wire in names.items()}
    result: dict[str, Any] = {}
    for key, value in changes.items():
        if key in ("id", "createdAt", "updatedAt"):
            continue
        if key == "status":
            result["status"] = parse_status(rtype, value).value
            continue
        attr = by_wire.get(key)
        if attr is None:
            raise RecordValidationError(rtype.value, key, "is not a known field")
        if not isinstance(value, str):
            raise RecordValidationError(rtype.value, key, "must be a string")
        if attr in payload_cls.required and not value.strip():
            raise RecordValidationError(rtype.value, key, "is required")
        if attr in payload_cls.date_fields and value:
            _check_iso_date(rtype.value, key, value)
        result[key] = value
    return result


@dataclass
class ContentRecord:
    """A single piece of publishable content."""

    id: str
    resource_type: ResourceType
    payload: ContentPayload
    status: ContentStatus = ContentStatus.DRAFT
    created_at: str | None = None
    updated_at: str | None = None
    # Wire keys this version does not model (e.g. a comment count) survive
    # a read/write round trip untouched.
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return getattr(self.payload, "title", "")

    @property
    def is_published(self) -> bool:
        return self.status == ContentStatus.PUBLISHED

    @property
    def is_local(self) -> bool:
        """True when the id was generated in fallback mode."""
        return is_local_id(self.id)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        data["id"] = self.id
        data.update(self.payload.to_dict())
        data["status"] = self.status.value
        if self.created_at is not None:
            data["createdAt"] = self.created_at
        if self.updated_at is not None:
            data["updatedAt"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, resource_type: ResourceType | str, data: Mapping[str, Any]) -> ContentRecord:
        """Parse a stored or remote record leniently."""
        rtype = ResourceType.parse(resource_type)
        payload_cls = PAYLOAD_TYPES[rtype]
        if "id" not in data and "_id" not in data:
            raise RecordValidationError(rtype.value, "id", "is required")
        record_id = str(data.get("id", data.get("_id")))
        known = set(payload_cls.wire_names().values()) | ENVELOPE_KEYS | {"_id"}
        try:
            status = ContentStatus(str(data.get("status") or "draft").lower())
        except ValueError:
            status = ContentStatus.DRAFT
        return cls(
            id=record_id,
            resource_type=rtype,
            payload=payload_cls.from_dict(data, strict=False),
            status=status,
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            extra={k: v for k, v in data.items() if k not in known},
        )

    @classmethod
    def new_local(
        cls,
        resource_type: ResourceType,
        payload: ContentPayload,
        status: ContentStatus = ContentStatus.DRAFT,
        now: str | None = None,
    ) -> ContentRecord:
        timestamp = now or utc_now_iso()
        return cls(
            id=generate_local_id(),
            resource_type=resource_type,
            payload=payload,
            status=status,
            created_at=timestamp,
            updated_at=timestamp,
        )

    def with_changes(self, changes: Mapping[str, Any], now: str | None = None) -> ContentRecord:
        """Return an updated copy; ``changes`` come from validate_changes()."""
        status = self.status
        if "status" in changes:
            status = parse_status(self.resource_type, changes["status"])
        return replace(
            self,
            payload=self.payload.merged(changes),
            status=status,
            updated_at=now or utc_now_iso(),
        )

    def matches(self, filters: Mapping[str, Any] | None) -> bool:
        """Equality filter over wire keys; ``published=True`` means status."""
        if not filters:
            return True
        data = self.to_dict()
        for key, expected in filters.items():
            if key == "published":
                if bool(expected) != self.is_published:
                    return False
                continue
            if isinstance(expected, Enum):
                expected = expected.value
            if data.get(key) != expected:
                return False
        return True
