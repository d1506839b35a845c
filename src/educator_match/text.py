"""Shared text-processing utilities.

Pure functions with no I/O — safe to import from any layer (CLI, pipeline,
RAG, matching).  The ``*_to_text`` helpers produce the descriptive text block
that is embedded for each record; keep their layout stable, since changing it
changes every stored vector.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from educator_match.models import JobPosting, TeacherProfile

_NOT_SPECIFIED = "Not specified"
_TOKEN_RE = re.compile(r"[a-z0-9]+")

# Words too common in postings/profiles to carry keyword signal
STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in",
        "is", "it", "of", "on", "or", "our", "the", "to", "we", "with", "you",
    }
)


def job_to_text(job: JobPosting) -> str:
    """Flatten a job posting into the block sent to the embedding model."""
    lines = [
        f"Position: {job.title}",
        f"Subject Area: {job.subject or _NOT_SPECIFIED}",
        f"Location: {job.city}, {job.country}",
        f"School Type: {job.school_type or _NOT_SPECIFIED}",
        f"Requirements: {job.requirements or _NOT_SPECIFIED}",
        f"Benefits: {job.benefits or _NOT_SPECIFIED}",
        f"Culture: {job.culture_fit or _NOT_SPECIFIED}",
        f"Description: {job.description or _NOT_SPECIFIED}",
    ]
    return "\n".join(lines)


def teacher_to_text(teacher: TeacherProfile) -> str:
    """Flatten a teacher profile into the block sent to the embedding model."""
    years = teacher.years_experience if teacher.years_experience is not None else 0
    subjects = ", ".join(teacher.subjects) or _NOT_SPECIFIED
    lines = [
        f"Teaching Experience: {years} years teaching {subjects}",
        f"Certifications: {', '.join(teacher.certifications) or _NOT_SPECIFIED}",
        f"Education: {teacher.degree_level or _NOT_SPECIFIED} in {teacher.degree_major or 'Education'}",
        "Preferred Locations: Interested in teaching in "
        f"{', '.join(teacher.preferred_countries) or _NOT_SPECIFIED}",
        f"Specializations: {', '.join(teacher.specializations) or 'General education'}",
        f"Teaching Strengths: {teacher.teaching_strengths or 'Passionate educator'}",
        f"Professional Bio: {teacher.bio or 'Dedicated teacher'}",
    ]
    return "\n".join(lines)


def tokenize(text: str) -> list[str]:
    """Lowercase alphanumeric tokens with stopwords removed.

    >>> tokenize("ESL Teacher - Seoul, South Korea")
    ['esl', 'teacher', 'seoul', 'south', 'korea']
    """
    return [t for t in _TOKEN_RE.findall(text.lower()) if t not in STOPWORDS]
