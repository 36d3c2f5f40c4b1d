"""FastAPI main application for the Attendance Monitor."""

import os
import logging
import traceback
from datetime import datetime
from typing import Dict, Optional

from fastapi import FastAPI, File, UploadFile, HTTPException, Request, Query
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from dotenv import load_dotenv

from attendance_monitor.config import AnalyticsConfig
from attendance_monitor.engine import AnalyticsEngine, AnalyticsSnapshot, InvalidEnrollmentError
from attendance_monitor.ingest import load_enrollment_rows
from attendance_monitor.models import RiskLevel, UploadResponse

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

app = FastAPI(title="Attendance Monitor", version="1.0.0")

# CORS configuration
allow_origins = os.getenv('ALLOW_ORIGINS', '*').split(',')
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions and return JSON."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    """Handle validation errors and return JSON."""
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=True)
    error_detail = str(exc)
    if os.getenv('DEBUG', 'False').lower() == 'true':
        error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"

    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {error_detail}",
            "type": type(exc).__name__
        }
    )


# Configuration
ANALYTICS_CONFIG = AnalyticsConfig.from_env()
engine = AnalyticsEngine(ANALYTICS_CONFIG)

MAX_UPLOAD_SIZE_MB = int(os.getenv('MAX_UPLOAD_SIZE_MB', '10'))
MAX_UPLOAD_SIZE = MAX_UPLOAD_SIZE_MB * 1024 * 1024

# In-memory snapshots keyed by upload time; the newest one is served
snapshot_cache: Dict[str, AnalyticsSnapshot] = {}


def latest_snapshot() -> AnalyticsSnapshot:
    if not snapshot_cache:
        raise HTTPException(status_code=404, detail="No attendance data available")
    return snapshot_cache[max(snapshot_cache.keys())]


def publish_snapshot(snapshot: AnalyticsSnapshot) -> str:
    """Replace the cached snapshot wholesale."""
    session_id = datetime.now().isoformat()
    snapshot_cache.clear()
    snapshot_cache[session_id] = snapshot
    return session_id


@app.get("/health")
async def health_check():
    """Health check endpoint to test server connectivity."""
    return JSONResponse(content={"status": "ok", "message": "Server is running"})


@app.post("/upload", response_model=UploadResponse)
async def upload_file(file: UploadFile = File(...)):
    """Upload an attendance export (.csv or .xlsx) and rebuild all analytics."""
    file_bytes = await file.read()
    if len(file_bytes) > MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {MAX_UPLOAD_SIZE_MB}MB"
        )

    if not file.filename or not file.filename.lower().endswith((".csv", ".xlsx")):
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Please upload a .csv or .xlsx file"
        )

    try:
        rows, skipped = load_enrollment_rows(file_bytes, file.filename)
    except Exception as e:
        logger.warning("Rejected upload %s: %s", file.filename, e)
        raise HTTPException(status_code=400, detail=f"Error loading file: {str(e)}")

    if not rows:
        raise HTTPException(status_code=400, detail="No attendance records found in the uploaded file.")

    try:
        snapshot = engine.build_snapshot(rows)
    except InvalidEnrollmentError as e:
        logger.warning("Rejected upload %s: %s", file.filename, e)
        raise HTTPException(status_code=422, detail=str(e))

    session_id = publish_snapshot(snapshot)
    stats = snapshot.summary()
    summary = {
        'Records': len(snapshot.records),
        'Skipped Rows': skipped,
        'Students': len(snapshot.students),
        'Courses': len(snapshot.courses),
    }
    summary.update({f"Risk: {level}": count for level, count in stats.students.items() if level != 'total'})

    logger.info("Upload %s processed as session %s: %s", file.filename, session_id, summary)

    return UploadResponse(
        success=True,
        message=f"Successfully processed {len(snapshot.records)} attendance records",
        summary=summary
    )


@app.get("/students")
async def get_students(
    risk_level: Optional[str] = Query(None, alias='riskLevel'),
    faculty: Optional[str] = None,
    advisor: Optional[str] = None,
    year_level: Optional[int] = Query(None, alias='yearLevel'),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
):
    """Student risk list, highest average absence rate first."""
    snapshot = latest_snapshot()
    students = list(snapshot.students)

    if risk_level and risk_level != 'all':
        try:
            level = RiskLevel(risk_level)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown risk level: {risk_level}")
        students = [s for s in students if s.risk_level == level]
    if faculty and faculty != 'all':
        students = [s for s in students if s.faculty == faculty]
    if advisor and advisor != 'all':
        students = [s for s in students if s.advisor_name == advisor]
    if year_level is not None:
        students = [s for s in students if s.year_level == year_level]
    if search and search.strip():
        needle = search.strip().lower()
        students = [
            s for s in students
            if needle in s.student_id.lower() or needle in (s.student_name or '').lower()
        ]

    total = len(students)
    offset = (page - 1) * limit
    data = [s.model_dump(mode='json', exclude={'records'}) for s in students[offset:offset + limit]]

    return {
        'data': data,
        'total': total,
        'page': page,
        'limit': limit,
        'totalPages': (total + limit - 1) // limit,
    }


@app.get("/students/{student_id}/courses")
async def get_student_courses(student_id: str):
    """One student's courses with rates and trailing absences."""
    snapshot = latest_snapshot()
    student = snapshot.get_student(student_id)
    if student is None:
        raise HTTPException(status_code=404, detail=f"Student {student_id} not found")

    return {
        'student': student.model_dump(mode='json', exclude={'records'}),
        'data': [r.model_dump(mode='json') for r in snapshot.student_courses(student_id)],
    }


@app.get("/courses")
async def get_courses(
    has_no_checks: Optional[bool] = Query(None, alias='hasNoChecks'),
    min_high_absence: Optional[int] = Query(None, alias='minAbsenceRate', ge=0),
    q: Optional[str] = None,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """
    Course sections, most high-absence students first.

    `minAbsenceRate` keeps sections with at least that many high-absence
    students.
    """
    snapshot = latest_snapshot()
    courses = list(snapshot.courses)

    if has_no_checks is not None:
        courses = [c for c in courses if c.has_no_checks == has_no_checks]
    if min_high_absence is not None:
        courses = [c for c in courses if c.students_high_absence >= min_high_absence]
    if q:
        needle = q.lower()
        courses = [
            c for c in courses
            if any(needle in (v or '').lower() for v in (c.course_code, c.course_name, c.instructor))
        ]

    courses.sort(key=lambda c: (-c.students_high_absence, c.course_code, c.section, c.study_mode.value))
    data = [c.model_dump(mode='json') for c in courses[offset:offset + limit]]
    return {'data': data, 'total': len(courses), 'limit': limit, 'offset': offset}


@app.get("/consecutive-absence")
async def get_consecutive_absence(min_consecutive: Optional[int] = Query(None, alias='min', ge=1)):
    """Students whose latest absences in a course form a run of at least `min`."""
    snapshot = latest_snapshot()
    flagged = snapshot.flagged_absences(min_consecutive)
    if min_consecutive is None:
        min_consecutive = snapshot.config.min_consecutive_absences

    return {
        'data': [s.model_dump(mode='json') for s in flagged],
        'total': len(flagged),
        'minConsecutive': min_consecutive,
    }


@app.get("/faculty-report")
async def get_faculty_report(
    faculty: Optional[str] = None,
    min_absence_rate: Optional[float] = Query(None, alias='minAbsenceRate', ge=0, le=100),
):
    """Faculty -> advisor -> student hierarchy of at-risk students."""
    snapshot = latest_snapshot()
    report = snapshot.faculty_report(faculty, min_absence_rate)
    return {
        'data': [node.model_dump(mode='json') for node in report],
        'faculties': [node.faculty for node in report],
    }


@app.get("/attendance-report")
async def get_attendance_report(
    faculty: Optional[str] = None,
    count_present: Optional[bool] = Query(None, alias='countP'),
    count_late: Optional[bool] = Query(None, alias='countL'),
    count_leave: Optional[bool] = Query(None, alias='countS'),
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """
    Faculty -> course overview with per-session rates and trends.

    The overview covers every course; only courseDetails is paged.
    """
    snapshot = latest_snapshot()
    report = snapshot.attendance_report(faculty, count_present, count_late, count_leave)

    overview = [
        node.model_dump(mode='json', exclude={'courses'})
        for node in report
    ]
    courses = [course for node in report for course in node.courses]
    return {
        'faculties': [node.faculty for node in report],
        'overview': overview,
        'courseDetails': [c.model_dump(mode='json') for c in courses[offset:offset + limit]],
        'metadata': {'total': len(courses), 'limit': limit, 'offset': offset},
    }


@app.get("/stats")
async def get_stats(advisor: Optional[str] = None):
    """Headline counts."""
    snapshot = latest_snapshot()
    return snapshot.summary(advisor).model_dump(mode='json')


@app.get("/charts")
async def get_charts():
    """Distributions for the dashboard charts."""
    snapshot = latest_snapshot()
    return snapshot.charts().model_dump(mode='json')


@app.get("/advisors")
async def get_advisors():
    """Distinct advisor names for filter menus."""
    snapshot = latest_snapshot()
    return {'advisors': snapshot.advisors()}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    uvicorn.run(app, host="0.0.0.0", port=8000)
