"""Hierarchical rollups: faculty/advisor reports, flagged absences, summary stats, charts."""

import logging
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from pyuca import Collator

from attendance_monitor.config import AnalyticsConfig
from attendance_monitor.models import (
    AbsenceBucket,
    AdvisorNode,
    AtRiskStudent,
    AttendanceRecord,
    ChartData,
    CourseAggregate,
    CourseHighlight,
    FacultyCourseNode,
    FacultyNode,
    FacultyRiskBreakdown,
    FlaggedCourse,
    FlaggedStudent,
    GpaPoint,
    RatePoint,
    RiskLevel,
    StudentAggregate,
    SummaryStats,
    YearRiskBreakdown,
)
from attendance_monitor.parsers import checked_statuses
from attendance_monitor.risk import count_by_risk, mean

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_collator() -> Collator:
    # Loading the collation table is slow; share one instance
    return Collator()


def collation_key(value: str) -> Tuple:
    """
    Sort key following the Unicode Collation Algorithm.

    Code-point order puts Thai or accented names in the wrong place; the
    raw string is appended so distinct names never compare equal.
    """
    return (get_collator().sort_key(value), value)


def collated(values: Iterable[str]) -> List[str]:
    return sorted(values, key=collation_key)


def label_or_placeholder(value: Optional[str], config: AnalyticsConfig) -> str:
    if value is None or not str(value).strip():
        return config.unspecified_label
    return str(value).strip()


def build_faculty_report(
    students: Sequence[StudentAggregate],
    faculty: Optional[str] = None,
    min_absence_rate: Optional[float] = None,
    config: Optional[AnalyticsConfig] = None
) -> List[FacultyNode]:
    """
    Build the faculty -> advisor -> student hierarchy of at-risk students.

    Only students outside the Normal tier are considered. Each keeps the
    courses whose absence rate reaches ``min_absence_rate``; a student
    left with no such course is dropped. Students keep the order they
    arrive in.

    Args:
        students: Aggregates, usually ordered by average absence rate descending
        faculty: Restrict to one faculty (None or 'all' for every faculty)
        min_absence_rate: Course filter, defaults to config.min_absence_rate
        config: Thresholds and placeholder label

    Returns:
        Faculty nodes in collation order, advisors in collation order
    """
    config = config or AnalyticsConfig()
    if min_absence_rate is None:
        min_absence_rate = config.min_absence_rate
    if faculty == 'all':
        faculty = None

    tree: Dict[str, Dict[str, List[AtRiskStudent]]] = {}
    for student in students:
        if student.risk_level == RiskLevel.NORMAL:
            continue

        faculty_name = label_or_placeholder(student.faculty, config)
        if faculty is not None and faculty_name != faculty:
            continue

        courses = sorted(
            (r for r in student.records if r.absence_rate >= min_absence_rate),
            key=lambda r: (-r.absence_rate, r.course_key)
        )
        if not courses:
            continue

        advisor_name = label_or_placeholder(student.advisor_name, config)
        node = AtRiskStudent(
            student_id=student.student_id,
            student_name=student.student_name,
            department=student.department,
            year_level=student.year_level,
            gpa=student.gpa,
            risk_level=student.risk_level,
            avg_absence_rate=student.avg_absence_rate,
            courses_at_risk=student.courses_at_risk,
            courses=courses,
        )
        tree.setdefault(faculty_name, {}).setdefault(advisor_name, []).append(node)

    return [
        FacultyNode(
            faculty=faculty_name,
            advisors=[
                AdvisorNode(advisor=advisor_name, students=tree[faculty_name][advisor_name])
                for advisor_name in collated(tree[faculty_name])
            ],
        )
        for faculty_name in collated(tree)
    ]


def build_faculty_course_report(
    courses: Sequence[CourseAggregate],
    faculty: Optional[str] = None,
    config: Optional[AnalyticsConfig] = None
) -> List[FacultyCourseNode]:
    """Group course aggregates by faculty for the trend overview."""
    config = config or AnalyticsConfig()
    if faculty == 'all':
        faculty = None

    grouped: Dict[str, List[CourseAggregate]] = {}
    for course in courses:
        faculty_name = label_or_placeholder(course.faculty, config)
        if faculty is not None and faculty_name != faculty:
            continue
        grouped.setdefault(faculty_name, []).append(course)

    return [
        FacultyCourseNode(
            faculty=faculty_name,
            courses=sorted(
                grouped[faculty_name],
                key=lambda c: (c.course_code, c.section, c.study_mode.value)
            ),
        )
        for faculty_name in collated(grouped)
    ]


def flag_consecutive_absences(
    records: Iterable[AttendanceRecord],
    min_consecutive: Optional[int] = None,
    config: Optional[AnalyticsConfig] = None
) -> List[FlaggedStudent]:
    """
    Find students whose latest absences in a course form a long run.

    Args:
        records: Attendance records of every student
        min_consecutive: Minimum run length, defaults to config.min_consecutive_absences

    Returns:
        Students sorted by their longest run, then by number of flagged
        courses (both descending), then by student id
    """
    config = config or AnalyticsConfig()
    if min_consecutive is None:
        min_consecutive = config.min_consecutive_absences

    flagged: Dict[str, List[AttendanceRecord]] = {}
    for record in records:
        if record.trailing_absences >= min_consecutive:
            flagged.setdefault(record.student_id, []).append(record)

    result = []
    for student_id, student_records in flagged.items():
        student_records.sort(key=lambda r: (-r.trailing_absences, r.course_key))
        first = student_records[0]
        result.append(FlaggedStudent(
            student_id=student_id,
            student_name=first.student_name,
            faculty=first.faculty,
            year_level=first.year_level,
            gpa=first.gpa,
            advisor_name=first.advisor_name,
            courses=[
                FlaggedCourse(
                    course_code=r.course_code,
                    section=r.section,
                    study_mode=r.study_mode,
                    course_name=r.course_name,
                    instructor=r.instructor,
                    consecutive_absences=r.trailing_absences,
                    last_statuses=checked_statuses(r.sessions),
                    absence_rate=r.absence_rate,
                    total_sessions=r.total_sessions,
                )
                for r in student_records
            ],
        ))

    result.sort(key=lambda s: (-s.max_consecutive_absences, -s.total_flagged_courses, s.student_id))
    return result


def list_advisors(students: Iterable[StudentAggregate]) -> List[str]:
    """Distinct advisor names, trimmed and collated."""
    names = {s.advisor_name.strip() for s in students if s.advisor_name and s.advisor_name.strip()}
    return collated(names)


def summarize(
    students: Sequence[StudentAggregate],
    courses: Sequence[CourseAggregate],
    records: Sequence[AttendanceRecord],
    advisor: Optional[str] = None,
    config: Optional[AnalyticsConfig] = None
) -> SummaryStats:
    """
    Headline counts for the dashboard.

    The advisor filter narrows the student-side numbers only; course
    and record totals always cover everything.
    """
    config = config or AnalyticsConfig()
    if advisor == 'all':
        advisor = None
    if advisor is not None:
        students = [s for s in students if s.advisor_name == advisor]
        flag_source = [r for r in records if r.advisor_name == advisor]
    else:
        flag_source = list(records)

    risk_counts = count_by_risk(students)
    student_counts = {'total': len(students)}
    student_counts.update(risk_counts)

    flagged_students = {
        r.student_id for r in flag_source
        if r.trailing_absences >= config.min_consecutive_absences
    }

    return SummaryStats(
        students=student_counts,
        courses={
            'total': len(courses),
            'without_checks': sum(1 for c in courses if c.has_no_checks),
            'high_absence': sum(
                1 for c in courses
                if c.students_high_absence >= config.high_absence_course_min_students
            ),
        },
        faculties=collated({label_or_placeholder(s.faculty, config) for s in students}),
        consecutive_absence_students=len(flagged_students),
        total_records=len(records),
    )


# Histogram edges; the last bar is widened so 100% falls inside it
ABSENCE_BUCKET_EDGES = [0, 10, 20, 30, 40, 50, 60, 70, 80, 90, 101]
TOP_COURSES_LIMIT = 10


def bucket_label(low: int, high: int) -> str:
    if high > 100:
        return f"{low}-100%"
    return f"{low}-{high - 1}%"


def absence_histogram(students: Sequence[StudentAggregate]) -> List[AbsenceBucket]:
    """Count students per 10-point band of average absence rate."""
    rates = np.array([s.avg_absence_rate for s in students], dtype=float)
    counts, _ = np.histogram(rates, bins=ABSENCE_BUCKET_EDGES)
    return [
        AbsenceBucket(
            label=bucket_label(low, high),
            min_rate=low,
            max_rate=high,
            count=int(count),
        )
        for low, high, count in zip(ABSENCE_BUCKET_EDGES[:-1], ABSENCE_BUCKET_EDGES[1:], counts)
    ]


def risk_breakdown(students: Iterable[StudentAggregate]) -> Dict[str, int]:
    counts = count_by_risk(students)
    counts['total'] = sum(counts.values())
    return counts


def build_chart_data(
    students: Sequence[StudentAggregate],
    courses: Sequence[CourseAggregate],
    config: Optional[AnalyticsConfig] = None
) -> ChartData:
    """
    Distributions for the dashboard charts.

    Args:
        students: Student aggregates
        courses: Course aggregates
        config: Placeholder label for students without a faculty

    Returns:
        ChartData with tier counts, an absence histogram, the courses with
        most high-absence students, scatter points and per-faculty and
        per-year risk breakdowns
    """
    config = config or AnalyticsConfig()

    top_courses = sorted(
        (c for c in courses if c.students_high_absence > 0 and not c.has_no_checks),
        key=lambda c: (-c.students_high_absence, c.course_code, c.section, c.study_mode.value)
    )[:TOP_COURSES_LIMIT]

    by_faculty: Dict[str, List[StudentAggregate]] = {}
    by_year: Dict[int, List[StudentAggregate]] = {}
    for student in students:
        by_faculty.setdefault(label_or_placeholder(student.faculty, config), []).append(student)
        if student.year_level and student.year_level > 0:
            by_year.setdefault(student.year_level, []).append(student)

    faculty_distribution = [
        FacultyRiskBreakdown(faculty=name, **risk_breakdown(by_faculty[name]))
        for name in collated(by_faculty)
    ]
    # Most critical plus monitor students first; sort is stable so ties stay collated
    faculty_distribution.sort(key=lambda f: -(f.critical + f.monitor))

    return ChartData(
        risk_distribution=count_by_risk(students),
        absence_distribution=absence_histogram(students),
        top_absent_courses=[
            CourseHighlight(
                course_code=c.course_code,
                section=c.section,
                study_mode=c.study_mode,
                course_name=c.course_name,
                instructor=c.instructor,
                students_high_absence=c.students_high_absence,
                total_students=c.total_students,
                avg_attendance_rate=c.avg_attendance_rate,
            )
            for c in top_courses
        ],
        attendance_scatter=[
            RatePoint(
                attendance_rate=s.avg_attendance_rate,
                absence_rate=s.avg_absence_rate,
                risk_level=s.risk_level,
            )
            for s in students
        ],
        faculty_distribution=faculty_distribution,
        gpa_absence_scatter=[
            GpaPoint(
                gpa=s.gpa,
                absence_rate=s.avg_absence_rate,
                risk_level=s.risk_level,
                faculty=label_or_placeholder(s.faculty, config),
            )
            for s in students if s.gpa is not None
        ],
        year_distribution=[
            YearRiskBreakdown(year_level=year, **risk_breakdown(by_year[year]))
            for year in sorted(by_year)
        ],
        total_students=len(students),
        avg_absence_rate=mean([s.avg_absence_rate for s in students]),
        avg_attendance_rate=mean([s.avg_attendance_rate for s in students]),
    )
