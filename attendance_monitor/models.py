"""Data models for the Attendance Monitor application."""

import math
from enum import Enum
from typing import Optional, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_serializer


def round_rate(value: float, digits: int = 1) -> float:
    """
    Round a percentage for display, half away from zero.

    Built-in round() uses banker's rounding on the binary float, which turns
    62.5 into 62; attendance reports expect 63.
    """
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


class SessionOutcome(str, Enum):
    """Outcome recorded for one student at one session."""
    PRESENT = 'P'
    ABSENT = 'A'
    LATE = 'L'
    LEAVE = 'S'
    UNCHECKED = ''


CHECKED_OUTCOMES = (
    SessionOutcome.PRESENT,
    SessionOutcome.ABSENT,
    SessionOutcome.LATE,
    SessionOutcome.LEAVE,
)


class StudyMode(str, Enum):
    """Teaching mode of a course section."""
    LECTURE = 'C'
    LAB = 'L'


class RiskLevel(str, Enum):
    """Ordinal risk tier, lowest first."""
    NORMAL = 'normal'
    FOLLOW_UP = 'follow_up'
    MONITOR = 'monitor'
    CRITICAL = 'critical'


class Trend(str, Enum):
    UP = 'up'
    DOWN = 'down'
    STABLE = 'stable'


class EnrollmentInput(BaseModel):
    """One student-in-course row as handed over by the data source."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, coerce_numbers_to_str=True)

    student_id: str = Field(min_length=1)
    course_code: str = Field(min_length=1)
    section: str = ''
    study_mode: StudyMode = StudyMode.LECTURE
    raw_attendance: Optional[str] = None

    student_name: Optional[str] = None
    faculty: Optional[str] = None
    department: Optional[str] = None
    advisor_name: Optional[str] = None
    year_level: Optional[int] = None
    gpa: Optional[float] = None
    course_name: Optional[str] = None
    instructor: Optional[str] = None


class ParsedAttendance(BaseModel):
    """Result of parsing one raw attendance string."""
    model_config = ConfigDict(frozen=True)

    sessions: Tuple[SessionOutcome, ...] = ()
    total_sessions: int = 0
    present_count: int = 0
    absent_count: int = 0
    late_count: int = 0
    leave_count: int = 0
    unchecked_count: int = 0
    unrecognized_count: int = 0
    attendance_rate: float = 0.0
    absence_rate: float = 0.0

    @computed_field
    @property
    def valid_sessions(self) -> int:
        return self.total_sessions - self.unchecked_count

    @field_serializer('attendance_rate', 'absence_rate')
    def _round_rates(self, value: float) -> float:
        return round_rate(value)


class AttendanceRecord(ParsedAttendance):
    """One student enrolled in one course section."""
    student_id: str
    course_code: str
    section: str = ''
    study_mode: StudyMode = StudyMode.LECTURE
    raw_attendance: Optional[str] = None
    trailing_absences: int = 0

    student_name: Optional[str] = None
    faculty: Optional[str] = None
    department: Optional[str] = None
    advisor_name: Optional[str] = None
    year_level: Optional[int] = None
    gpa: Optional[float] = None
    course_name: Optional[str] = None
    instructor: Optional[str] = None

    @property
    def course_key(self) -> Tuple[str, str, str]:
        return (self.course_code, self.section, self.study_mode.value)


class StudentAggregate(BaseModel):
    """One student across all enrolled course sections."""
    model_config = ConfigDict(frozen=True)

    student_id: str
    student_name: Optional[str] = None
    faculty: Optional[str] = None
    department: Optional[str] = None
    advisor_name: Optional[str] = None
    year_level: Optional[int] = None
    gpa: Optional[float] = None
    records: Tuple[AttendanceRecord, ...] = ()
    total_courses: int = 0
    total_sessions: int = 0
    total_absences: int = 0
    total_late: int = 0
    avg_attendance_rate: float = 0.0
    avg_absence_rate: float = 0.0
    risk_level: RiskLevel = RiskLevel.NORMAL
    courses_at_risk: int = 0

    @field_serializer('avg_attendance_rate', 'avg_absence_rate')
    def _round_rates(self, value: float) -> float:
        return round_rate(value)


class SessionRate(BaseModel):
    """Aggregate of every enrolled student's outcome at one session index."""
    model_config = ConfigDict(frozen=True)

    session_index: int
    rate: float = 0.0
    sample_size: int = 0
    present: int = 0
    absent: int = 0
    late: int = 0
    leave: int = 0

    @field_serializer('rate')
    def _round_rate(self, value: float) -> float:
        return round_rate(value)


class CourseAggregate(BaseModel):
    """One course section across all enrolled students."""
    model_config = ConfigDict(frozen=True)

    course_code: str
    section: str = ''
    study_mode: StudyMode = StudyMode.LECTURE
    course_name: Optional[str] = None
    instructor: Optional[str] = None
    faculty: Optional[str] = None
    total_students: int = 0
    students_high_absence: int = 0
    avg_attendance_rate: float = 0.0
    has_no_checks: bool = True
    total_sessions: int = 0
    checked_sessions: int = 0
    total_session_slots: int = 0
    session_rates: Tuple[SessionRate, ...] = ()
    overall_rate: float = 0.0
    latest_rate: float = 0.0
    trend: Trend = Trend.STABLE

    @field_serializer('avg_attendance_rate', 'overall_rate', 'latest_rate')
    def _round_rates(self, value: float) -> float:
        return round_rate(value)


class FlaggedCourse(BaseModel):
    """A course where the student's latest absences form a long run."""
    model_config = ConfigDict(frozen=True)

    course_code: str
    section: str = ''
    study_mode: StudyMode = StudyMode.LECTURE
    course_name: Optional[str] = None
    instructor: Optional[str] = None
    consecutive_absences: int
    last_statuses: List[str] = []
    absence_rate: float = 0.0
    total_sessions: int = 0

    @field_serializer('absence_rate')
    def _round_rate(self, value: float) -> float:
        return round_rate(value)


class FlaggedStudent(BaseModel):
    model_config = ConfigDict(frozen=True)

    student_id: str
    student_name: Optional[str] = None
    faculty: Optional[str] = None
    year_level: Optional[int] = None
    gpa: Optional[float] = None
    advisor_name: Optional[str] = None
    courses: List[FlaggedCourse] = []

    @computed_field
    @property
    def total_flagged_courses(self) -> int:
        return len(self.courses)

    @computed_field
    @property
    def max_consecutive_absences(self) -> int:
        return max((c.consecutive_absences for c in self.courses), default=0)


class AtRiskStudent(BaseModel):
    """Student node of the faculty report with the courses that qualified."""
    model_config = ConfigDict(frozen=True)

    student_id: str
    student_name: Optional[str] = None
    department: Optional[str] = None
    year_level: Optional[int] = None
    gpa: Optional[float] = None
    risk_level: RiskLevel
    avg_absence_rate: float = 0.0
    courses_at_risk: int = 0
    courses: List[AttendanceRecord] = []

    @field_serializer('avg_absence_rate')
    def _round_rate(self, value: float) -> float:
        return round_rate(value)


class AdvisorNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    advisor: str
    students: List[AtRiskStudent] = []

    @computed_field
    @property
    def total_students(self) -> int:
        return len(self.students)


class FacultyNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    faculty: str
    advisors: List[AdvisorNode] = []

    @computed_field
    @property
    def total_students(self) -> int:
        return sum(a.total_students for a in self.advisors)


class FacultyCourseNode(BaseModel):
    """Faculty overview of course-level trends."""
    model_config = ConfigDict(frozen=True)

    faculty: str
    courses: List[CourseAggregate] = []

    @computed_field
    @property
    def course_count(self) -> int:
        return len(self.courses)

    @computed_field
    @property
    def avg_rate(self) -> float:
        """Unweighted mean of course overall rates, rounded for display."""
        if not self.courses:
            return 0.0
        return round_rate(sum(c.overall_rate for c in self.courses) / len(self.courses))

    @computed_field
    @property
    def trends_up(self) -> int:
        return sum(1 for c in self.courses if c.trend == Trend.UP)

    @computed_field
    @property
    def trends_down(self) -> int:
        return sum(1 for c in self.courses if c.trend == Trend.DOWN)

    @computed_field
    @property
    def trends_stable(self) -> int:
        return sum(1 for c in self.courses if c.trend == Trend.STABLE)


class AbsenceBucket(BaseModel):
    """One histogram bar; a student falls in it when min_rate <= rate < max_rate."""
    model_config = ConfigDict(frozen=True)

    label: str
    min_rate: float
    max_rate: float
    count: int = 0


class RiskBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    critical: int = 0
    monitor: int = 0
    follow_up: int = 0
    normal: int = 0


class FacultyRiskBreakdown(RiskBreakdown):
    faculty: str


class YearRiskBreakdown(RiskBreakdown):
    year_level: int


class CourseHighlight(BaseModel):
    """Course entry of the top high-absence chart."""
    model_config = ConfigDict(frozen=True)

    course_code: str
    section: str = ''
    study_mode: StudyMode = StudyMode.LECTURE
    course_name: Optional[str] = None
    instructor: Optional[str] = None
    students_high_absence: int = 0
    total_students: int = 0
    avg_attendance_rate: float = 0.0

    @field_serializer('avg_attendance_rate')
    def _round_rate(self, value: float) -> float:
        return round_rate(value)


class RatePoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    attendance_rate: float
    absence_rate: float
    risk_level: RiskLevel

    @field_serializer('attendance_rate', 'absence_rate')
    def _round_rates(self, value: float) -> float:
        return round_rate(value)


class GpaPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    gpa: float
    absence_rate: float
    risk_level: RiskLevel
    faculty: str

    @field_serializer('absence_rate')
    def _round_rate(self, value: float) -> float:
        return round_rate(value)


class ChartData(BaseModel):
    """Distributions behind the dashboard charts."""
    model_config = ConfigDict(frozen=True)

    risk_distribution: Dict[str, int]
    absence_distribution: List[AbsenceBucket] = []
    top_absent_courses: List[CourseHighlight] = []
    attendance_scatter: List[RatePoint] = []
    faculty_distribution: List[FacultyRiskBreakdown] = []
    gpa_absence_scatter: List[GpaPoint] = []
    year_distribution: List[YearRiskBreakdown] = []
    total_students: int = 0
    avg_absence_rate: float = 0.0
    avg_attendance_rate: float = 0.0

    @field_serializer('avg_absence_rate', 'avg_attendance_rate')
    def _round_rates(self, value: float) -> float:
        return round_rate(value)


class SummaryStats(BaseModel):
    """Headline counts for the dashboard."""
    students: Dict[str, int]
    courses: Dict[str, int]
    faculties: List[str]
    consecutive_absence_students: int
    total_records: int


class UploadResponse(BaseModel):
    """Response from file upload endpoint."""
    success: bool
    message: str
    summary: Dict[str, int]
