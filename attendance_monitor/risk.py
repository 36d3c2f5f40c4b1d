"""Risk classification and per-student aggregation."""

import logging
from typing import Dict, Iterable, List, Optional

from attendance_monitor.config import AnalyticsConfig
from attendance_monitor.models import AttendanceRecord, RiskLevel, StudentAggregate

logger = logging.getLogger(__name__)

RISK_ORDER = [RiskLevel.NORMAL, RiskLevel.FOLLOW_UP, RiskLevel.MONITOR, RiskLevel.CRITICAL]

PASS_THROUGH_FIELDS = (
    'student_name', 'faculty', 'department', 'advisor_name', 'year_level', 'gpa',
)


def get_risk_category(absence_rate: float, config: Optional[AnalyticsConfig] = None) -> RiskLevel:
    """
    Categorize an absence rate into one of four risk tiers.

    Args:
        absence_rate: Absence percentage (0-100)
        config: Tier cutoffs; each tier includes its lower bound

    Returns:
        RiskLevel
    """
    config = config or AnalyticsConfig()
    if absence_rate >= config.critical_at:
        return RiskLevel.CRITICAL
    elif absence_rate >= config.monitor_at:
        return RiskLevel.MONITOR
    elif absence_rate >= config.follow_up_at:
        return RiskLevel.FOLLOW_UP
    else:
        return RiskLevel.NORMAL


def is_high_absence(record: AttendanceRecord, config: Optional[AnalyticsConfig] = None) -> bool:
    """True if the record's absence rate reaches the high-absence cutoff."""
    config = config or AnalyticsConfig()
    return record.absence_rate >= config.high_absence_at


def mean(values: List[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def aggregate_student(
    student_id: str,
    records: List[AttendanceRecord],
    config: Optional[AnalyticsConfig] = None
) -> StudentAggregate:
    """
    Combine one student's records into a StudentAggregate.

    Averages are per course, not per session: a 4-session lab weighs the
    same as a 30-session lecture.
    """
    config = config or AnalyticsConfig()
    avg_attendance = mean([r.attendance_rate for r in records])
    avg_absence = mean([r.absence_rate for r in records])

    # First non-empty value wins for descriptive fields
    details = {}
    for field in PASS_THROUGH_FIELDS:
        details[field] = next(
            (getattr(r, field) for r in records if getattr(r, field) not in (None, '')),
            None
        )

    return StudentAggregate(
        student_id=student_id,
        records=tuple(records),
        total_courses=len(records),
        total_sessions=sum(r.total_sessions for r in records),
        total_absences=sum(r.absent_count for r in records),
        total_late=sum(r.late_count for r in records),
        avg_attendance_rate=avg_attendance,
        avg_absence_rate=avg_absence,
        risk_level=get_risk_category(avg_absence, config),
        courses_at_risk=sum(1 for r in records if is_high_absence(r, config)),
        **details,
    )


def build_student_aggregates(
    records: Iterable[AttendanceRecord],
    config: Optional[AnalyticsConfig] = None
) -> List[StudentAggregate]:
    """
    Group records by student and aggregate each group.

    Returns:
        Aggregates sorted by average absence rate descending, then student id
    """
    config = config or AnalyticsConfig()
    grouped: Dict[str, List[AttendanceRecord]] = {}
    for record in records:
        grouped.setdefault(record.student_id, []).append(record)

    students = [aggregate_student(sid, recs, config) for sid, recs in grouped.items()]
    students.sort(key=lambda s: (-s.avg_absence_rate, s.student_id))

    logger.debug("Aggregated %d records into %d students", sum(len(r) for r in grouped.values()), len(students))
    return students


def count_by_risk(students: Iterable[StudentAggregate]) -> Dict[str, int]:
    """Number of students per risk tier, every tier present."""
    counts = {level.value: 0 for level in RISK_ORDER}
    for student in students:
        counts[student.risk_level.value] += 1
    return counts
