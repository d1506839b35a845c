"""Visa rule book tests — per-country eligibility from config/visa_rules.toml."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from educator_match.errors import ActionableError, ErrorType
from educator_match.matching.visa import (
    Priority,
    VisaRuleBook,
    evaluate_condition,
    load_visa_rules,
    summarize,
)
from conftest import VISA_RULES_PATH

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from educator_match.models import TeacherProfile


@pytest.fixture
def shipped_rules() -> VisaRuleBook:
    """The rule book shipped in config/."""
    return load_visa_rules(VISA_RULES_PATH)


class TestConditionOperators:
    """REQUIREMENT: Rule conditions compare profile fields with fixed operators.

    WHO: Operators writing visa rules in TOML
    WHAT: eq/neq/gte/lte/gt/lt/in/not_in/includes behave as named; a
          missing profile value never satisfies a condition; an unknown
          operator fails rather than passing
    WHY: A condition that passes on missing data would vouch for visas the
         teacher cannot get
    """

    def test_in_matches_listed_value(self) -> None:
        """'US' is in ['US', 'UK']."""
        assert evaluate_condition("US", "in", ["US", "UK"])

    def test_not_in_rejects_listed_value(self) -> None:
        """'US' is not not_in ['US']."""
        assert not evaluate_condition("US", "not_in", ["US"])

    def test_gte_compares_numerically(self) -> None:
        """62 >= 62 holds."""
        assert evaluate_condition(62, "gte", 62)

    def test_includes_checks_list_membership(self) -> None:
        """A certification list includes 'TEFL'."""
        assert evaluate_condition(["TEFL", "QTS"], "includes", "TEFL")

    def test_missing_value_never_satisfies(self) -> None:
        """None fails even a neq condition."""
        assert not evaluate_condition(None, "neq", "clean")

    def test_unknown_operator_fails(self) -> None:
        """An operator the evaluator does not know is treated as failed."""
        assert not evaluate_condition(5, "approximately", 5)


class TestCountryEligibility:
    """REQUIREMENT: A teacher is checked against a country's full rule.

    WHO: Teachers deciding where to apply; the constraint evaluator
    WHAT: All requirements met and no disqualifier → eligible at 95%
          confidence; a disqualifier → 10%; a CRITICAL failure → 30%; only
          lower-priority failures → 60%; failures are sorted CRITICAL first
          and unknown requirement data fails while unknown disqualifier
          data does not disqualify
    WHY: The confidence tiers tell the teacher whether a gap is fixable
    """

    def test_qualified_teacher_is_eligible(
        self, shipped_rules: VisaRuleBook, make_teacher: Callable[..., TeacherProfile]
    ) -> None:
        """A US BA holder with a clean, apostilled record qualifies for an E-2."""
        result = shipped_rules.check(make_teacher(), "South Korea")
        assert result.eligible
        assert result.visa_type == "E-2"
        assert result.confidence == 95

    def test_country_lookup_ignores_case(
        self, shipped_rules: VisaRuleBook, make_teacher: Callable[..., TeacherProfile]
    ) -> None:
        """'south korea' finds the 'South Korea' rule."""
        result = shipped_rules.check(make_teacher(), "south korea")
        assert result.eligible
        assert result.country == "South Korea"

    def test_disqualifier_gives_low_confidence(
        self, shipped_rules: VisaRuleBook, make_teacher: Callable[..., TeacherProfile]
    ) -> None:
        """Being over the age limit disqualifies regardless of other fields."""
        result = shipped_rules.check(make_teacher(age=65), "South Korea")
        assert not result.eligible
        assert result.confidence == 10
        assert result.disqualifications

    def test_critical_failure_gives_30_percent(
        self, shipped_rules: VisaRuleBook, make_teacher: Callable[..., TeacherProfile]
    ) -> None:
        """An ineligible citizenship is a CRITICAL failure."""
        result = shipped_rules.check(make_teacher(citizenship="FR"), "South Korea")
        assert not result.eligible
        assert result.confidence == 30
        assert result.failed_requirements[0].priority is Priority.CRITICAL

    def test_high_priority_failure_gives_60_percent(
        self, shipped_rules: VisaRuleBook, make_teacher: Callable[..., TeacherProfile]
    ) -> None:
        """A missing apostille is fixable, so confidence stays at 60."""
        result = shipped_rules.check(make_teacher(has_apostille=False), "South Korea")
        assert not result.eligible
        assert result.confidence == 60
        assert summarize(result).startswith("May be eligible for South Korea")

    def test_failures_are_sorted_by_priority(
        self, shipped_rules: VisaRuleBook, make_teacher: Callable[..., TeacherProfile]
    ) -> None:
        """CRITICAL failures are listed before HIGH ones."""
        teacher = make_teacher(citizenship="FR", has_apostille=False)
        result = shipped_rules.check(teacher, "South Korea")
        priorities = [c.priority for c in result.failed_requirements]
        assert priorities == [Priority.CRITICAL, Priority.HIGH]

    def test_unknown_requirement_data_fails(
        self, shipped_rules: VisaRuleBook, make_teacher: Callable[..., TeacherProfile]
    ) -> None:
        """No background-check answer cannot satisfy 'clean record required'."""
        result = shipped_rules.check(make_teacher(criminal_record=None), "South Korea")
        assert not result.eligible
        assert any(c.field == "criminal_record" for c in result.failed_requirements)

    def test_unknown_disqualifier_data_does_not_disqualify(
        self, shipped_rules: VisaRuleBook, make_teacher: Callable[..., TeacherProfile]
    ) -> None:
        """An unanswered age or visa-history question is not a disqualification."""
        teacher = make_teacher(age=None, has_visa_violation_history=None)
        result = shipped_rules.check(teacher, "South Korea")
        assert result.disqualifications == []
        assert result.eligible

    def test_unknown_country_is_not_eligible(
        self, shipped_rules: VisaRuleBook, make_teacher: Callable[..., TeacherProfile]
    ) -> None:
        """No rule means no vouching: not eligible, zero confidence."""
        result = shipped_rules.check(make_teacher(), "Atlantis")
        assert not result.eligible
        assert result.confidence == 0
        assert "No visa rules configured" in result.failed_requirements[0].message

    def test_eligible_countries_lists_passing_rules(
        self, shipped_rules: VisaRuleBook, make_teacher: Callable[..., TeacherProfile]
    ) -> None:
        """The default teacher's eligible list includes South Korea but never
        a country without a rule."""
        countries = shipped_rules.eligible_countries(make_teacher())
        assert "South Korea" in countries
        assert "Atlantis" not in countries


class TestVisaRuleLoading:
    """REQUIREMENT: Visa rules load from TOML and are validated at startup.

    WHO: Operators editing config/visa_rules.toml
    WHAT: Missing file → CONFIG; bad TOML → PARSE; unknown operator or
          priority → VALIDATION; the shipped file loads cleanly
    WHY: A typo in a rule must stop the process, not silently pass teachers
    """

    def test_shipped_rules_load(self, shipped_rules: VisaRuleBook) -> None:
        """The repository's rule file covers the main destinations."""
        assert {"South Korea", "China", "Japan"} <= set(shipped_rules.countries)

    def test_missing_file_raises_config_error(self, tmp_path: Path) -> None:
        """A path that does not exist is a CONFIG error."""
        with pytest.raises(ActionableError) as exc_info:
            load_visa_rules(tmp_path / "missing.toml")
        assert exc_info.value.error_type == ErrorType.CONFIG

    def test_malformed_toml_raises_parse_error(self, tmp_path: Path) -> None:
        """Broken TOML syntax is a PARSE error."""
        path = tmp_path / "rules.toml"
        path.write_text("[[rules]\ncountry = ")
        with pytest.raises(ActionableError) as exc_info:
            load_visa_rules(path)
        assert exc_info.value.error_type == ErrorType.PARSE

    def test_unknown_operator_raises_validation_error(self, tmp_path: Path) -> None:
        """An operator outside the supported set is rejected on load."""
        path = tmp_path / "rules.toml"
        path.write_text(
            '[[rules]]\ncountry = "Chile"\nvisa_type = "Work"\n'
            '[[rules.requirements]]\nfield = "age"\noperator = "about"\nvalue = 30\n'
        )
        with pytest.raises(ActionableError) as exc_info:
            load_visa_rules(path)
        assert exc_info.value.error_type == ErrorType.VALIDATION
