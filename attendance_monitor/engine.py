"""Analytics engine: validates enrollments once and answers every report view."""

import logging
from collections.abc import Mapping
from typing import Any, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from attendance_monitor.config import AnalyticsConfig
from attendance_monitor.models import (
    AttendanceRecord,
    ChartData,
    CourseAggregate,
    EnrollmentInput,
    FacultyCourseNode,
    FacultyNode,
    FlaggedStudent,
    StudentAggregate,
    SummaryStats,
)
from attendance_monitor.parsers import build_record
from attendance_monitor.risk import build_student_aggregates
from attendance_monitor.rollup import (
    build_chart_data,
    build_faculty_course_report,
    build_faculty_report,
    flag_consecutive_absences,
    list_advisors,
    summarize,
)
from attendance_monitor.sessions import build_course_aggregates

logger = logging.getLogger(__name__)

_enrollment_list = TypeAdapter(List[EnrollmentInput])


class InvalidEnrollmentError(ValueError):
    """Raised when the input collection is not a collection of enrollment records."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


def validate_enrollments(items: Any) -> List[EnrollmentInput]:
    """
    Check the shape of the whole input before anything is processed.

    Args:
        items: Iterable of EnrollmentInput instances or mappings with the same keys

    Returns:
        Validated EnrollmentInput list

    Raises:
        InvalidEnrollmentError: if the collection or any element is malformed
    """
    if items is None or isinstance(items, (str, bytes, Mapping)):
        raise InvalidEnrollmentError(
            f"Expected a collection of enrollment records, got {type(items).__name__}"
        )
    try:
        items = list(items)
    except TypeError:
        raise InvalidEnrollmentError(
            f"Expected a collection of enrollment records, got {type(items).__name__}"
        )

    try:
        return _enrollment_list.validate_python(items)
    except ValidationError as e:
        raise InvalidEnrollmentError(
            f"{e.error_count()} invalid enrollment field(s)", errors=e.errors()
        ) from e


class AnalyticsSnapshot(BaseModel):
    """Everything derived from one ingestion cycle. Never updated in place."""
    model_config = ConfigDict(frozen=True)

    config: AnalyticsConfig
    records: Tuple[AttendanceRecord, ...] = ()
    students: Tuple[StudentAggregate, ...] = ()
    courses: Tuple[CourseAggregate, ...] = ()

    def get_student(self, student_id: str) -> Optional[StudentAggregate]:
        return next((s for s in self.students if s.student_id == student_id), None)

    def student_courses(self, student_id: str) -> List[AttendanceRecord]:
        """One student's records, highest absence rate first."""
        records = [r for r in self.records if r.student_id == student_id]
        return sorted(records, key=lambda r: (-r.absence_rate, r.course_key))

    def flagged_absences(self, min_consecutive: Optional[int] = None) -> List[FlaggedStudent]:
        return flag_consecutive_absences(self.records, min_consecutive, self.config)

    def faculty_report(
        self,
        faculty: Optional[str] = None,
        min_absence_rate: Optional[float] = None
    ) -> List[FacultyNode]:
        return build_faculty_report(self.students, faculty, min_absence_rate, self.config)

    def attendance_report(
        self,
        faculty: Optional[str] = None,
        count_present: Optional[bool] = None,
        count_late: Optional[bool] = None,
        count_leave: Optional[bool] = None
    ) -> List[FacultyCourseNode]:
        """
        Faculty -> course trend overview.

        The count toggles override which outcomes count as attended; when
        any is given the session matrices are rebuilt with them.
        """
        toggles = {
            'count_present': count_present,
            'count_late': count_late,
            'count_leave': count_leave,
        }
        toggles = {k: v for k, v in toggles.items() if v is not None}
        if not toggles:
            return build_faculty_course_report(self.courses, faculty, self.config)

        config = self.config.model_copy(update=toggles)
        courses = build_course_aggregates(self.records, config)
        return build_faculty_course_report(courses, faculty, config)

    def summary(self, advisor: Optional[str] = None) -> SummaryStats:
        return summarize(self.students, self.courses, self.records, advisor, self.config)

    def charts(self) -> ChartData:
        return build_chart_data(self.students, self.courses, self.config)

    def advisors(self) -> List[str]:
        return list_advisors(self.students)


class AnalyticsEngine:
    """Builds snapshots from enrollment collections using one configuration."""

    def __init__(self, config: Optional[AnalyticsConfig] = None):
        self.config = config or AnalyticsConfig()

    def build_records(self, enrollments: Iterable[Any]) -> List[AttendanceRecord]:
        validated = validate_enrollments(enrollments)
        return [build_record(e, self.config) for e in validated]

    def build_snapshot(self, enrollments: Iterable[Any]) -> AnalyticsSnapshot:
        """
        Validate, parse and aggregate a full enrollment collection.

        Raises:
            InvalidEnrollmentError: before any processing if the input is malformed
        """
        records = self.build_records(enrollments)
        students = build_student_aggregates(records, self.config)
        courses = build_course_aggregates(records, self.config)

        logger.info(
            "Built analytics snapshot: %d records, %d students, %d course sections",
            len(records), len(students), len(courses)
        )
        return AnalyticsSnapshot(
            config=self.config,
            records=tuple(records),
            students=tuple(students),
            courses=tuple(courses),
        )

