"""Per-session course matrices and trend detection."""

import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from attendance_monitor.config import AnalyticsConfig
from attendance_monitor.models import (
    AttendanceRecord,
    CourseAggregate,
    SessionOutcome,
    SessionRate,
    Trend,
)
from attendance_monitor.parsers import has_checks
from attendance_monitor.risk import is_high_absence, mean

logger = logging.getLogger(__name__)

# Column order of the count matrix
OUTCOME_COLUMNS = {
    SessionOutcome.PRESENT: 0,
    SessionOutcome.ABSENT: 1,
    SessionOutcome.LATE: 2,
    SessionOutcome.LEAVE: 3,
}


def build_count_matrix(sequences: Sequence[Sequence[SessionOutcome]]) -> np.ndarray:
    """
    Count outcomes per session index across students.

    Returns:
        Integer array of shape (max sequence length, 4) with columns
        present, absent, late, leave. Unchecked sessions add nothing.
    """
    width = max((len(seq) for seq in sequences), default=0)
    counts = np.zeros((width, len(OUTCOME_COLUMNS)), dtype=np.int64)
    for seq in sequences:
        for idx, outcome in enumerate(seq):
            col = OUTCOME_COLUMNS.get(outcome)
            if col is not None:
                counts[idx, col] += 1
    return counts


def attended_columns(config: AnalyticsConfig) -> List[int]:
    """Matrix columns counted as attended in the session rate."""
    columns = []
    if config.count_present:
        columns.append(OUTCOME_COLUMNS[SessionOutcome.PRESENT])
    if config.count_late:
        columns.append(OUTCOME_COLUMNS[SessionOutcome.LATE])
    if config.count_leave:
        columns.append(OUTCOME_COLUMNS[SessionOutcome.LEAVE])
    return columns


def compute_session_rates(
    sequences: Sequence[Sequence[SessionOutcome]],
    config: Optional[AnalyticsConfig] = None
) -> List[SessionRate]:
    """
    Build the per-session rate sequence for one course section.

    Students with shorter sequences simply do not contribute to the later
    indices. Trailing sessions that nobody has a checked outcome for are
    trimmed; empty sessions in the middle are kept with rate 0 and
    sample_size 0.
    """
    config = config or AnalyticsConfig()
    counts = build_count_matrix(sequences)
    totals = counts.sum(axis=1)
    attended = counts[:, attended_columns(config)].sum(axis=1)
    rates = np.divide(
        attended * 100.0, totals,
        out=np.zeros(len(totals), dtype=float),
        where=totals > 0
    )

    nonzero = np.flatnonzero(totals)
    last = int(nonzero[-1]) + 1 if len(nonzero) else 0

    return [
        SessionRate(
            session_index=idx + 1,
            rate=float(rates[idx]),
            sample_size=int(totals[idx]),
            present=int(counts[idx, 0]),
            absent=int(counts[idx, 1]),
            late=int(counts[idx, 2]),
            leave=int(counts[idx, 3]),
        )
        for idx in range(last)
    ]


def detect_trend(rates: Sequence[float], threshold: float = 5.0) -> Trend:
    """
    Compare the first and last thirds of a rate sequence.

    Args:
        rates: Rates of the valid (checked) sessions, earliest first
        threshold: Minimum difference in points to call a direction

    Returns:
        Trend.UP, Trend.DOWN or Trend.STABLE (fewer than 3 sessions is stable)
    """
    if len(rates) < 3:
        return Trend.STABLE

    third = math.ceil(len(rates) / 3)
    early_avg = mean(list(rates[:third]))
    late_avg = mean(list(rates[-third:]))
    diff = late_avg - early_avg

    if diff > threshold:
        return Trend.UP
    if diff < -threshold:
        return Trend.DOWN
    return Trend.STABLE


def aggregate_course(
    records: Sequence[AttendanceRecord],
    config: Optional[AnalyticsConfig] = None
) -> CourseAggregate:
    """Build the CourseAggregate for the records of one course section."""
    if not records:
        raise ValueError("Cannot aggregate a course section without records")
    config = config or AnalyticsConfig()
    first = records[0]

    session_rates = compute_session_rates([r.sessions for r in records], config)
    valid = [s.rate for s in session_rates if s.sample_size > 0]

    def first_value(field: str):
        return next((getattr(r, field) for r in records if getattr(r, field)), None)

    return CourseAggregate(
        course_code=first.course_code,
        section=first.section,
        study_mode=first.study_mode,
        course_name=first_value('course_name'),
        instructor=first_value('instructor'),
        faculty=first_value('faculty'),
        total_students=len({r.student_id for r in records}),
        students_high_absence=sum(1 for r in records if is_high_absence(r, config)),
        avg_attendance_rate=mean([r.attendance_rate for r in records]),
        has_no_checks=not any(has_checks(r.sessions) for r in records),
        total_sessions=max(r.total_sessions for r in records),
        checked_sessions=len(valid),
        total_session_slots=len(session_rates),
        session_rates=tuple(session_rates),
        overall_rate=mean(valid),
        latest_rate=valid[-1] if valid else 0.0,
        trend=detect_trend(valid, config.trend_diff_threshold),
    )


def build_course_aggregates(
    records: Iterable[AttendanceRecord],
    config: Optional[AnalyticsConfig] = None
) -> List[CourseAggregate]:
    """
    Group records by (course code, section, study mode) and aggregate.

    Returns:
        Aggregates sorted by course code, section, study mode
    """
    config = config or AnalyticsConfig()
    grouped: Dict[Tuple[str, str, str], List[AttendanceRecord]] = {}
    for record in records:
        grouped.setdefault(record.course_key, []).append(record)

    courses = [aggregate_course(grouped[key], config) for key in sorted(grouped)]
    logger.debug("Built session matrices for %d course sections", len(courses))
    return courses
