"""Unit tests for parsers module."""

import pytest

from attendance_monitor.config import AnalyticsConfig
from attendance_monitor.models import EnrollmentInput, SessionOutcome, StudyMode
from attendance_monitor.parsers import (
    build_record,
    checked_statuses,
    count_trailing_absences,
    has_checks,
    parse_attendance,
    tokenize,
)


def trailing(raw, **config):
    parsed = parse_attendance(raw)
    return count_trailing_absences(parsed.sessions, **config)


def test_parse_empty_input():
    """Empty or missing input yields zero sessions, not one empty session."""
    for raw in ("", None, "   "):
        parsed = parse_attendance(raw)
        assert parsed.total_sessions == 0
        assert parsed.sessions == ()
        assert parsed.attendance_rate == 0.0
        assert parsed.absence_rate == 0.0
        assert parsed.valid_sessions == 0


def test_parse_mixed_string():
    """Counts and rates for a string with every kind of outcome."""
    parsed = parse_attendance("P,A,A,,L")

    assert parsed.total_sessions == 5
    assert parsed.present_count == 1
    assert parsed.absent_count == 2
    assert parsed.late_count == 1
    assert parsed.leave_count == 0
    assert parsed.unchecked_count == 1
    assert parsed.valid_sessions == 4
    assert parsed.attendance_rate == 25.0
    assert parsed.absence_rate == 50.0


def test_parse_strips_quotes_whitespace_and_case():
    """Quotes and whitespace are stripped, tokens are upper-cased."""
    parsed = parse_attendance('" p ", "a",\'s\' , l')

    assert parsed.sessions == (
        SessionOutcome.PRESENT,
        SessionOutcome.ABSENT,
        SessionOutcome.LEAVE,
        SessionOutcome.LATE,
    )
    assert tokenize('"P,A,,L"') == ['P', 'A', '', 'L']


def test_trailing_comma_adds_unchecked_session():
    """A trailing comma is one more unchecked session."""
    parsed = parse_attendance("P,A,")

    assert parsed.total_sessions == 3
    assert parsed.unchecked_count == 1
    assert parsed.sessions[-1] == SessionOutcome.UNCHECKED
    assert parsed.absence_rate == 50.0


def test_only_commas_has_no_valid_sessions():
    """A string of commas has sessions but no rate denominator."""
    parsed = parse_attendance(",,,")

    assert parsed.total_sessions == 4
    assert parsed.unchecked_count == 4
    assert parsed.attendance_rate == 0.0
    assert parsed.absence_rate == 0.0
    assert has_checks(parsed.sessions) == False


def test_counts_always_add_up():
    """The five counts always sum to total_sessions."""
    samples = ["", "P", "P,A,L,S,", ",,,", "X,P,?,A", "p,a,l,s,x,,", '"A","A",""']
    for policy in ('unchecked', 'discard'):
        config = AnalyticsConfig(unknown_token_policy=policy)
        for raw in samples:
            parsed = parse_attendance(raw, config)
            total = (
                parsed.present_count + parsed.absent_count + parsed.late_count
                + parsed.leave_count + parsed.unchecked_count
            )
            assert total == parsed.total_sessions, (policy, raw)


def test_unknown_tokens_default_to_unchecked():
    """Unknown tokens stay in the sequence as unchecked and do not dilute rates."""
    parsed = parse_attendance("P,X,A,A")

    assert parsed.total_sessions == 4
    assert parsed.unchecked_count == 1
    assert parsed.unrecognized_count == 1
    assert parsed.sessions[1] == SessionOutcome.UNCHECKED
    assert parsed.attendance_rate == pytest.approx(100 / 3)
    assert parsed.absence_rate == pytest.approx(200 / 3)


def test_unknown_tokens_discard_policy():
    """With the discard policy unknown tokens vanish from the sequence."""
    config = AnalyticsConfig(unknown_token_policy='discard')
    parsed = parse_attendance("P,X,A,A", config)

    assert parsed.total_sessions == 3
    assert parsed.unchecked_count == 0
    assert parsed.unrecognized_count == 1
    assert parsed.sessions == (SessionOutcome.PRESENT, SessionOutcome.ABSENT, SessionOutcome.ABSENT)
    # Same rates as the default policy: neither inflates the denominator
    assert parsed.attendance_rate == pytest.approx(100 / 3)
    assert parsed.absence_rate == pytest.approx(200 / 3)


def test_rates_keep_full_precision():
    """Rates are not rounded until they are serialized."""
    parsed = parse_attendance("P,A,A")

    assert parsed.attendance_rate == pytest.approx(33.333333, rel=1e-6)
    assert parsed.model_dump()['attendance_rate'] == 33.3
    assert parsed.model_dump()['absence_rate'] == 66.7


def test_trailing_absences_basic():
    """Runs are counted backward from the latest session."""
    assert trailing("A,A,A") == 3
    assert trailing("A,A,P") == 0
    assert trailing("P,A,A,,") == 2
    assert trailing("") == 0
    assert trailing(",,,") == 0
    assert trailing("L,A") == 1


def test_trailing_absences_unchecked_inside_run():
    """Unchecked sessions inside a run are skipped by default, or end it if configured."""
    assert trailing("P,A,A,,A") == 3
    assert trailing("P,A,A,,A", unchecked_breaks_run=True) == 1
    # Trailing unchecked sessions never end a run
    assert trailing("P,A,A,,", unchecked_breaks_run=True) == 2


def test_checked_statuses_drop_unchecked():
    parsed = parse_attendance("P,,A,X,S")
    assert checked_statuses(parsed.sessions) == ['P', 'A', 'S']


def test_build_record_carries_identity_and_trailing_run():
    """build_record combines parsing, trailing run and pass-through fields."""
    enrollment = EnrollmentInput(
        student_id="6501",
        course_code="CS101",
        section="1",
        study_mode="L",
        raw_attendance="P,A,A,A",
        faculty="Science",
        gpa=2.5,
    )
    record = build_record(enrollment)

    assert record.student_id == "6501"
    assert record.study_mode == StudyMode.LAB
    assert record.course_key == ("CS101", "1", "L")
    assert record.trailing_absences == 3
    assert record.absence_rate == 75.0
    assert record.faculty == "Science"
    assert record.gpa == 2.5
    assert record.raw_attendance == "P,A,A,A"


def test_record_is_immutable():
    record = build_record(EnrollmentInput(student_id="1", course_code="C", raw_attendance="P"))
    with pytest.raises(Exception):
        record.present_count = 5
