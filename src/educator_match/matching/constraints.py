"""Hard-constraint evaluation for a teacher/job pair.

Three binary constraints are checked:

- ``certification`` — the teacher holds every certification the job requires
- ``experience`` — the teacher meets the job's minimum years of experience
- ``visa`` — the teacher is visa-eligible for the job's country

Each constraint either passes or fails; there is no partial credit.  When the
data a constraint needs is missing (unknown experience, unknown citizenship,
no certifications on file) the constraint **fails** — overstating
eligibility would put candidates in front of schools who cannot hire them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from educator_match.matching.visa import VisaRuleBook
    from educator_match.models import JobPosting, TeacherProfile

CERTIFICATION = "certification"
EXPERIENCE = "experience"
VISA = "visa"


@dataclass(frozen=True)
class ConstraintResult:
    """Per-constraint outcomes plus the aggregate pass rate (0–100)."""

    checks: dict[str, bool] = field(default_factory=dict)

    @property
    def passed(self) -> int:
        return sum(1 for ok in self.checks.values() if ok)

    @property
    def evaluated(self) -> int:
        return len(self.checks)

    @property
    def constraint_match(self) -> float:
        """Share of constraints passed × 100, to two decimals."""
        if not self.checks:
            return 0.0
        return round(self.passed / self.evaluated * 100.0, 2)

    @property
    def failed(self) -> list[str]:
        return [name for name, ok in self.checks.items() if not ok]


class ConstraintEvaluator:
    """Evaluates the hard constraints for (teacher, job) pairs."""

    def __init__(self, rule_book: VisaRuleBook) -> None:
        self._rule_book = rule_book

    def evaluate(self, teacher: TeacherProfile, job: JobPosting) -> ConstraintResult:
        return ConstraintResult(
            checks={
                CERTIFICATION: self.has_required_certifications(teacher, job),
                EXPERIENCE: self.meets_experience(teacher, job),
                VISA: self.is_visa_eligible(teacher, job),
            }
        )

    @staticmethod
    def has_required_certifications(teacher: TeacherProfile, job: JobPosting) -> bool:
        required = {c.strip().upper() for c in job.required_certifications if c.strip()}
        if not required:
            return True
        held = {c.strip().upper() for c in teacher.certifications}
        return required <= held

    @staticmethod
    def meets_experience(teacher: TeacherProfile, job: JobPosting) -> bool:
        if not job.min_years_experience:
            return True
        if teacher.years_experience is None:
            return False
        return teacher.years_experience >= job.min_years_experience

    def is_visa_eligible(self, teacher: TeacherProfile, job: JobPosting) -> bool:
        if not teacher.citizenship:
            return False
        return self._rule_book.check(teacher, job.country).eligible
