"""Rule-based visa eligibility checks.

Each destination country has a :class:`VisaRule` made of *requirements*
(conditions the teacher must meet) and *disqualifiers* (conditions that rule
the teacher out).  Rules live in ``config/visa_rules.toml`` so they can be
updated without a code change::

    [[rules]]
    country = "China"
    visa_type = "Z"

    [[rules.requirements]]
    field = "years_experience"
    operator = "gte"
    value = 2
    message = "Minimum 2 years of post-graduation work experience required"
    priority = "CRITICAL"

``field`` names a :class:`~educator_match.models.TeacherProfile` attribute.
A teacher value of ``None`` fails every condition — unknown data never
counts as eligible.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from educator_match.errors import ActionableError

if TYPE_CHECKING:
    from educator_match.models import TeacherProfile

logger = logging.getLogger(__name__)

DEFAULT_VISA_RULES_PATH = Path("config/visa_rules.toml")


class Priority(StrEnum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"


_PRIORITY_ORDER = {Priority.CRITICAL: 0, Priority.HIGH: 1, Priority.MEDIUM: 2}

_OPERATORS = frozenset({"eq", "neq", "gte", "lte", "gt", "lt", "in", "not_in", "includes"})


@dataclass(frozen=True)
class Condition:
    """A single ``<field> <operator> <value>`` test against a teacher."""

    field: str
    operator: str
    value: Any
    message: str
    priority: Priority = Priority.HIGH

    def holds_for(self, teacher: TeacherProfile) -> bool:
        actual = getattr(teacher, self.field, None)
        return evaluate_condition(actual, self.operator, self.value)


@dataclass(frozen=True)
class VisaRule:
    """Visa requirements for one destination country."""

    country: str
    visa_type: str
    description: str = ""
    requirements: tuple[Condition, ...] = ()
    disqualifiers: tuple[Condition, ...] = ()
    notes: str | None = None
    last_updated: str | None = None


@dataclass
class VisaCheckResult:
    """Outcome of checking one teacher against one country's rule."""

    eligible: bool
    country: str
    visa_type: str
    failed_requirements: list[Condition] = field(default_factory=list)
    disqualifications: list[str] = field(default_factory=list)
    passed_requirements: list[str] = field(default_factory=list)
    confidence: int = 0
    notes: str | None = None


def evaluate_condition(actual: Any, operator: str, expected: Any) -> bool:
    """Evaluate ``actual <operator> expected``; ``None`` never satisfies."""
    if actual is None:
        return False

    match operator:
        case "eq":
            return bool(actual == expected)
        case "neq":
            return bool(actual != expected)
        case "gte":
            return float(actual) >= float(expected)
        case "lte":
            return float(actual) <= float(expected)
        case "gt":
            return float(actual) > float(expected)
        case "lt":
            return float(actual) < float(expected)
        case "in":
            return isinstance(expected, list) and actual in expected
        case "not_in":
            return isinstance(expected, list) and actual not in expected
        case "includes":
            return isinstance(actual, list) and expected in actual
        case _:
            logger.warning("Unknown visa rule operator '%s' — treating as failed", operator)
            return False


class VisaRuleBook:
    """Case-insensitive lookup of visa rules by country."""

    def __init__(self, rules: list[VisaRule]) -> None:
        self._rules = {rule.country.lower(): rule for rule in rules}

    @property
    def countries(self) -> list[str]:
        return [rule.country for rule in self._rules.values()]

    def rule_for(self, country: str) -> VisaRule | None:
        return self._rules.get(country.lower())

    def check(self, teacher: TeacherProfile, country: str) -> VisaCheckResult:
        """Check *teacher* against the rule for *country*.

        A country with no configured rule is **not eligible** — the operator
        must add a rule before the platform vouches for a visa.
        """
        rule = self.rule_for(country)
        if rule is None:
            return VisaCheckResult(
                eligible=False,
                country=country,
                visa_type="Unknown",
                failed_requirements=[
                    Condition(
                        field="country",
                        operator="eq",
                        value=country,
                        message=f"No visa rules configured for {country}",
                        priority=Priority.CRITICAL,
                    )
                ],
            )

        failed: list[Condition] = []
        passed: list[str] = []
        for requirement in rule.requirements:
            if requirement.holds_for(teacher):
                passed.append(requirement.message)
            else:
                failed.append(requirement)

        disqualifications = [d.message for d in rule.disqualifiers if d.holds_for(teacher)]

        failed.sort(key=lambda c: _PRIORITY_ORDER[c.priority])
        eligible = not failed and not disqualifications

        if eligible:
            confidence = 95
        elif disqualifications:
            confidence = 10
        elif any(c.priority is Priority.CRITICAL for c in failed):
            confidence = 30
        else:
            confidence = 60

        return VisaCheckResult(
            eligible=eligible,
            country=rule.country,
            visa_type=rule.visa_type,
            failed_requirements=failed,
            disqualifications=disqualifications,
            passed_requirements=passed,
            confidence=confidence,
            notes=rule.notes,
        )

    def eligible_countries(self, teacher: TeacherProfile) -> list[str]:
        """Every configured country where *teacher* passes the visa check."""
        return [c for c in self.countries if self.check(teacher, c).eligible]


def summarize(result: VisaCheckResult) -> str:
    """One-line human summary of a visa check."""
    if result.eligible:
        return f"Eligible for a {result.visa_type} visa in {result.country}"
    if result.disqualifications:
        return f"Disqualified from {result.country}: {result.disqualifications[0]}"
    first = result.failed_requirements[0]
    if first.priority is Priority.CRITICAL:
        return f"Cannot apply to {result.country}: {first.message}"
    return f"May be eligible for {result.country} but must meet: {first.message}"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_visa_rules(path: str | Path = DEFAULT_VISA_RULES_PATH) -> VisaRuleBook:
    """Load and validate visa rules from a TOML file.

    Raises :class:`~educator_match.errors.ActionableError`:
      - CONFIG if the file is missing
      - PARSE if the TOML is malformed
      - VALIDATION if a rule uses an unknown operator or priority
    """
    filepath = Path(path)
    if not filepath.exists():
        raise ActionableError.config(
            field_name="visa_rules_path",
            reason=f"Visa rules file not found: {filepath}",
            suggestion=f"Create {filepath} or point visa_rules_path at an existing file",
        )
    try:
        data = tomllib.loads(filepath.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ActionableError.parse(
            source=str(filepath),
            location="TOML syntax",
            raw_error=str(exc),
        ) from None

    rules = [_parse_rule(raw, i) for i, raw in enumerate(data.get("rules", []))]
    logger.debug("Loaded %d visa rule(s) from %s", len(rules), filepath)
    return VisaRuleBook(rules)


def _parse_rule(raw: dict[str, Any], index: int) -> VisaRule:
    country = raw.get("country")
    if not country:
        raise ActionableError.validation(
            field_name=f"rules[{index}].country",
            reason="is required",
        )
    return VisaRule(
        country=str(country),
        visa_type=str(raw.get("visa_type", "Unknown")),
        description=str(raw.get("description", "")),
        requirements=tuple(
            _parse_condition(c, f"{country}.requirements[{i}]")
            for i, c in enumerate(raw.get("requirements", []))
        ),
        disqualifiers=tuple(
            _parse_condition(c, f"{country}.disqualifiers[{i}]")
            for i, c in enumerate(raw.get("disqualifiers", []))
        ),
        notes=raw.get("notes"),
        last_updated=raw.get("last_updated"),
    )


def _parse_condition(raw: dict[str, Any], where: str) -> Condition:
    operator = str(raw.get("operator", ""))
    if operator not in _OPERATORS:
        raise ActionableError.validation(
            field_name=f"{where}.operator",
            reason=f"'{operator}' is not one of {sorted(_OPERATORS)}",
        )
    try:
        priority = Priority(str(raw.get("priority", Priority.HIGH)))
    except ValueError:
        raise ActionableError.validation(
            field_name=f"{where}.priority",
            reason=f"'{raw.get('priority')}' must be CRITICAL, HIGH or MEDIUM",
        ) from None
    return Condition(
        field=str(raw["field"]),
        operator=operator,
        value=raw.get("value"),
        message=str(raw.get("message", "")),
        priority=priority,
    )
