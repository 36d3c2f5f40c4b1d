"""Attendance-code parsing: raw strings to session outcomes, counts and rates."""

import logging
from typing import Iterable, Optional, Sequence, List

from attendance_monitor.config import AnalyticsConfig
from attendance_monitor.models import (
    AttendanceRecord,
    CHECKED_OUTCOMES,
    EnrollmentInput,
    ParsedAttendance,
    SessionOutcome,
)

logger = logging.getLogger(__name__)

QUOTE_CHARS = '"\''

TOKEN_MAP = {
    'P': SessionOutcome.PRESENT,
    'A': SessionOutcome.ABSENT,
    'L': SessionOutcome.LATE,
    'S': SessionOutcome.LEAVE,
    '': SessionOutcome.UNCHECKED,
}


def clean_token(token: str) -> str:
    """Strip whitespace and surrounding quotes, upper-case the rest."""
    return token.strip().strip(QUOTE_CHARS).strip().upper()


def tokenize(raw: Optional[str]) -> List[str]:
    """
    Split a raw attendance string into cleaned tokens.

    One token per comma-delimited field, empty ones included. An empty or
    blank string yields no tokens at all rather than one empty token.
    """
    if raw is None:
        return []
    # Whole-string quoting such as '"P,A,,L"' is common in CSV exports
    cleaned = raw.strip().strip(QUOTE_CHARS)
    if not cleaned.strip():
        return []
    return [clean_token(token) for token in cleaned.split(',')]


def safe_rate(count: int, denominator: int) -> float:
    """Percentage of count over denominator; 0.0 when the denominator is 0."""
    if denominator <= 0:
        return 0.0
    return count / denominator * 100.0


def parse_attendance(raw: Optional[str], config: Optional[AnalyticsConfig] = None) -> ParsedAttendance:
    """
    Parse attendance string and calculate statistics.

    Args:
        raw: Comma-separated attendance string (e.g. "P,A,,L,S,P")
        config: Controls what happens to tokens outside P/A/L/S/blank

    Returns:
        ParsedAttendance with the session sequence, counts and full-precision rates
    """
    config = config or AnalyticsConfig()
    discard_unknown = config.unknown_token_policy == 'discard'

    sessions = []
    unrecognized = 0
    for token in tokenize(raw):
        outcome = TOKEN_MAP.get(token)
        if outcome is None:
            unrecognized += 1
            logger.debug("Unrecognized attendance token %r", token)
            if discard_unknown:
                continue
            outcome = SessionOutcome.UNCHECKED
        sessions.append(outcome)

    present = sessions.count(SessionOutcome.PRESENT)
    absent = sessions.count(SessionOutcome.ABSENT)
    late = sessions.count(SessionOutcome.LATE)
    leave = sessions.count(SessionOutcome.LEAVE)
    unchecked = sessions.count(SessionOutcome.UNCHECKED)

    # Rates exclude unchecked sessions
    valid = len(sessions) - unchecked

    return ParsedAttendance(
        sessions=tuple(sessions),
        total_sessions=len(sessions),
        present_count=present,
        absent_count=absent,
        late_count=late,
        leave_count=leave,
        unchecked_count=unchecked,
        unrecognized_count=unrecognized,
        attendance_rate=safe_rate(present, valid),
        absence_rate=safe_rate(absent, valid),
    )


def count_trailing_absences(sessions: Sequence[SessionOutcome], unchecked_breaks_run: bool = False) -> int:
    """
    Count consecutive absences from the end of the session sequence.

    Unchecked sessions are skipped, so "P,A,A,," counts 2. With
    ``unchecked_breaks_run`` an unchecked session inside the run ends it
    instead; trailing unchecked sessions are skipped either way.
    """
    count = 0
    for outcome in reversed(sessions):
        if outcome == SessionOutcome.UNCHECKED:
            if unchecked_breaks_run and count > 0:
                break
            continue
        if outcome != SessionOutcome.ABSENT:
            break
        count += 1
    return count


def checked_statuses(sessions: Iterable[SessionOutcome]) -> List[str]:
    """Recorded P/A/L/S codes in order, unchecked sessions dropped."""
    return [outcome.value for outcome in sessions if outcome in CHECKED_OUTCOMES]


def has_checks(sessions: Iterable[SessionOutcome]) -> bool:
    return any(outcome in CHECKED_OUTCOMES for outcome in sessions)


def build_record(enrollment: EnrollmentInput, config: Optional[AnalyticsConfig] = None) -> AttendanceRecord:
    """Parse one enrollment's attendance string into an AttendanceRecord."""
    config = config or AnalyticsConfig()
    parsed = parse_attendance(enrollment.raw_attendance, config)
    trailing = count_trailing_absences(parsed.sessions, config.unchecked_breaks_run)

    return AttendanceRecord(
        sessions=parsed.sessions,
        total_sessions=parsed.total_sessions,
        present_count=parsed.present_count,
        absent_count=parsed.absent_count,
        late_count=parsed.late_count,
        leave_count=parsed.leave_count,
        unchecked_count=parsed.unchecked_count,
        unrecognized_count=parsed.unrecognized_count,
        attendance_rate=parsed.attendance_rate,
        absence_rate=parsed.absence_rate,
        trailing_absences=trailing,
        **enrollment.model_dump(),
    )
