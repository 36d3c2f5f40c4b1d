"""Unit tests for per-session course rates and trends."""

import numpy as np
import pytest

from attendance_monitor.config import AnalyticsConfig
from attendance_monitor.models import EnrollmentInput, SessionOutcome, StudyMode, Trend
from attendance_monitor.parsers import build_record, parse_attendance
from attendance_monitor.sessions import (
    aggregate_course,
    build_count_matrix,
    build_course_aggregates,
    compute_session_rates,
    detect_trend,
)


def sequences(*raws):
    return [parse_attendance(raw).sessions for raw in raws]


def make_record(student_id, raw, course_code="CS101", section="1", study_mode="C", **extra):
    return build_record(EnrollmentInput(
        student_id=student_id,
        course_code=course_code,
        section=section,
        study_mode=study_mode,
        raw_attendance=raw,
        **extra
    ))


def test_count_matrix_shape_and_counts():
    """Columns are present, absent, late, leave; unchecked adds nothing."""
    counts = build_count_matrix(sequences("P,A,,S", "L,A"))

    assert counts.shape == (4, 4)
    np.testing.assert_array_equal(counts[0], [1, 0, 1, 0])
    np.testing.assert_array_equal(counts[1], [0, 2, 0, 0])
    np.testing.assert_array_equal(counts[2], [0, 0, 0, 0])
    np.testing.assert_array_equal(counts[3], [0, 0, 0, 1])


def test_count_matrix_empty():
    assert build_count_matrix([]).shape == (0, 4)


def test_session_rates_cover_longest_sequence():
    """Shorter sequences stop contributing after their last session."""
    rates = compute_session_rates(sequences("P,A,P", "P,P,A,A,P"))

    assert len(rates) == 5
    assert [r.session_index for r in rates] == [1, 2, 3, 4, 5]
    assert rates[0].rate == 100.0
    assert rates[1].rate == 50.0
    assert rates[1].sample_size == 2
    assert rates[3].rate == 0.0
    assert rates[3].sample_size == 1
    assert rates[4].rate == 100.0
    assert rates[4].sample_size == 1


def test_session_rates_trim_trailing_unchecked():
    """Trailing indices nobody has a checked outcome for are dropped."""
    rates = compute_session_rates(sequences("P,A,,", "P,,,"))

    assert len(rates) == 2
    assert rates[1].sample_size == 1


def test_session_rates_keep_interior_gaps():
    """An unchecked session in the middle stays with sample size 0."""
    rates = compute_session_rates(sequences("P,,A", "A,,P"))

    assert len(rates) == 3
    assert rates[1].sample_size == 0
    assert rates[1].rate == 0.0


def test_session_rates_leave_toggle():
    """Leave is not attended unless configured."""
    seqs = sequences("S", "P")

    assert compute_session_rates(seqs)[0].rate == 50.0
    assert compute_session_rates(seqs, AnalyticsConfig(count_leave=True))[0].rate == 100.0
    assert compute_session_rates(seqs, AnalyticsConfig(count_present=False))[0].rate == 0.0


def test_session_rates_late_counts_as_attended():
    seqs = sequences("L", "A")

    assert compute_session_rates(seqs)[0].rate == 50.0
    assert compute_session_rates(seqs, AnalyticsConfig(count_late=False))[0].rate == 0.0


def test_detect_trend_up():
    """First and last thirds are compared with ceil(n/3) sessions each."""
    assert detect_trend([50, 55, 52, 90, 95]) == Trend.UP


def test_detect_trend_down():
    assert detect_trend([90, 85, 80, 60, 50, 40]) == Trend.DOWN


def test_detect_trend_stable():
    assert detect_trend([80, 82, 78, 81]) == Trend.STABLE
    # Exactly the threshold is not enough
    assert detect_trend([50, 50, 55]) == Trend.STABLE
    assert detect_trend([50, 50, 56]) == Trend.UP


def test_detect_trend_short_sequences_are_stable():
    assert detect_trend([]) == Trend.STABLE
    assert detect_trend([10]) == Trend.STABLE
    assert detect_trend([10, 100]) == Trend.STABLE


def test_detect_trend_custom_threshold():
    assert detect_trend([50, 55, 52, 90, 95], threshold=50) == Trend.STABLE


def test_aggregate_course_rates():
    """Overall rate averages checked sessions, latest rate is the last checked one."""
    records = [
        make_record("1", "P,P,A,,", course_name="Intro", instructor="Ajarn B", faculty="Science"),
        make_record("2", "P,A,A"),
    ]
    course = aggregate_course(records)

    assert course.course_code == "CS101"
    assert course.course_name == "Intro"
    assert course.instructor == "Ajarn B"
    assert course.faculty == "Science"
    assert course.total_students == 2
    assert course.total_sessions == 5
    assert course.total_session_slots == 3
    assert course.checked_sessions == 3
    assert course.overall_rate == pytest.approx((100 + 50 + 0) / 3)
    assert course.latest_rate == 0.0
    assert course.trend == Trend.DOWN
    assert course.has_no_checks == False
    # Both students are at 33.3% and 66.7% absence
    assert course.students_high_absence == 2
    assert course.avg_attendance_rate == pytest.approx((200 / 3 + 100 / 3) / 2)


def test_aggregate_course_without_checks():
    """A section where nobody has been checked yet."""
    course = aggregate_course([make_record("1", ",,,"), make_record("2", "")])

    assert course.has_no_checks == True
    assert course.session_rates == ()
    assert course.overall_rate == 0.0
    assert course.latest_rate == 0.0
    assert course.trend == Trend.STABLE
    assert course.total_sessions == 4


def test_aggregate_course_requires_records():
    with pytest.raises(ValueError):
        aggregate_course([])


def test_course_key_includes_section_and_mode():
    """Lecture and lab of the same course are separate sections."""
    records = [
        make_record("1", "P", study_mode="L"),
        make_record("1", "A", study_mode="C"),
        make_record("2", "P", section="2"),
        make_record("3", "P", course_code="AB100"),
    ]
    courses = build_course_aggregates(records)

    assert [(c.course_code, c.section, c.study_mode) for c in courses] == [
        ("AB100", "1", StudyMode.LECTURE),
        ("CS101", "1", StudyMode.LECTURE),
        ("CS101", "1", StudyMode.LAB),
        ("CS101", "2", StudyMode.LECTURE),
    ]
    assert courses[1].session_rates[0].absent == 1


def test_session_rate_serialized_rounded():
    rates = compute_session_rates(sequences("P", "P", "A"))

    assert rates[0].rate == pytest.approx(200 / 3)
    assert rates[0].model_dump()['rate'] == 66.7
    assert rates[0].model_dump()['present'] == 2
