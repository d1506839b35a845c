"""Job posting and teacher profile records.

These are the two entity kinds the matcher works with.  Records arrive from
the corpus data source as plain dicts (JSON files on the CLI, ChromaDB
metadata at query time) and are rebuilt with :meth:`from_dict`; every field
that a hard constraint reads is an explicit attribute so a missing value is
``None`` rather than an absent key.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from educator_match.errors import ActionableError

# Certifications that satisfy a "TEFL" visa requirement
TEFL_EQUIVALENTS = frozenset({"TEFL", "TESOL", "CELTA"})


class EntityKind(StrEnum):
    """Which side of the marketplace a record belongs to."""

    JOB = "job"
    TEACHER = "teacher"


def _parse_datetime(value: Any) -> datetime:
    """Accept ISO-8601 strings or datetimes; naive values are taken as UTC."""
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            raise ActionableError.validation(
                field_name="created_at",
                reason=f"'{value}' is not an ISO-8601 timestamp",
            ) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _require(data: dict[str, Any], key: str, kind: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise ActionableError.validation(
            field_name=f"{kind}.{key}",
            reason="is required",
            suggestion=f"Add '{key}' to every {kind} record",
        )
    return value


@dataclass
class JobPosting:
    """An open position at a recruiting school."""

    id: str
    title: str
    subject: str
    city: str
    country: str
    school_type: str | None = None
    requirements: str | None = None
    benefits: str | None = None
    culture_fit: str | None = None
    description: str | None = None
    min_years_experience: int | None = None
    required_certifications: list[str] = field(default_factory=list)
    salary_usd: float | None = None
    status: str = "active"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    kind = EntityKind.JOB

    @property
    def location(self) -> str:
        return f"{self.city}, {self.country}"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobPosting:
        min_years = data.get("min_years_experience")
        salary = data.get("salary_usd")
        return cls(
            id=str(_require(data, "id", "job")),
            title=str(_require(data, "title", "job")),
            subject=str(data.get("subject") or ""),
            city=str(data.get("city") or ""),
            country=str(_require(data, "country", "job")),
            school_type=data.get("school_type"),
            requirements=data.get("requirements"),
            benefits=data.get("benefits"),
            culture_fit=data.get("culture_fit"),
            description=data.get("description"),
            min_years_experience=int(min_years) if min_years is not None else None,
            required_certifications=list(data.get("required_certifications") or []),
            salary_usd=float(salary) if salary is not None else None,
            status=str(data.get("status") or "active"),
            created_at=_parse_datetime(data.get("created_at")),
        )


@dataclass
class TeacherProfile:
    """An international teacher looking for a position."""

    id: str
    first_name: str
    last_name: str
    subjects: list[str] = field(default_factory=list)
    years_experience: int | None = None
    certifications: list[str] = field(default_factory=list)
    citizenship: str | None = None
    preferred_countries: list[str] = field(default_factory=list)
    degree_level: str | None = None
    degree_major: str | None = None
    specializations: list[str] = field(default_factory=list)
    teaching_strengths: str | None = None
    bio: str | None = None
    video_transcript: str | None = None
    age: int | None = None
    criminal_record: str | None = None
    has_apostille: bool | None = None
    has_teaching_license: bool | None = None
    has_health_certificate: bool | None = None
    has_visa_violation_history: bool | None = None
    has_drug_history: bool | None = None
    min_salary_usd: float | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    kind = EntityKind.TEACHER

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def has_tefl(self) -> bool:
        """Holds a TEFL-equivalent certificate (TEFL, TESOL or CELTA)."""
        return any(c.upper() in TEFL_EQUIVALENTS for c in self.certifications)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TeacherProfile:
        years = data.get("years_experience")
        age = data.get("age")
        min_salary = data.get("min_salary_usd")
        return cls(
            id=str(_require(data, "id", "teacher")),
            first_name=str(data.get("first_name") or ""),
            last_name=str(data.get("last_name") or ""),
            subjects=list(data.get("subjects") or []),
            years_experience=int(years) if years is not None else None,
            certifications=list(data.get("certifications") or []),
            citizenship=data.get("citizenship"),
            preferred_countries=list(data.get("preferred_countries") or []),
            degree_level=data.get("degree_level"),
            degree_major=data.get("degree_major"),
            specializations=list(data.get("specializations") or []),
            teaching_strengths=data.get("teaching_strengths"),
            bio=data.get("bio"),
            video_transcript=data.get("video_transcript"),
            age=int(age) if age is not None else None,
            criminal_record=data.get("criminal_record"),
            has_apostille=data.get("has_apostille"),
            has_teaching_license=data.get("has_teaching_license"),
            has_health_certificate=data.get("has_health_certificate"),
            has_visa_violation_history=data.get("has_visa_violation_history"),
            has_drug_history=data.get("has_drug_history"),
            min_salary_usd=float(min_salary) if min_salary is not None else None,
            created_at=_parse_datetime(data.get("created_at")),
        )


Record = JobPosting | TeacherProfile


def record_from_dict(kind: EntityKind | str, data: dict[str, Any]) -> Record:
    """Rebuild a record of the given *kind* from its dict form."""
    if EntityKind(kind) is EntityKind.JOB:
        return JobPosting.from_dict(data)
    return TeacherProfile.from_dict(data)


@dataclass
class CorpusEntry:
    """A record together with its stored embeddings.

    ``embedding`` is the profile/posting vector.  ``video_embedding`` is only
    present for teachers with an analysed video introduction.
    """

    record: Record
    embedding: list[float]
    document: str = ""
    video_embedding: list[float] | None = None

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def kind(self) -> EntityKind:
        return self.record.kind

    @property
    def created_at(self) -> datetime:
        return self.record.created_at
