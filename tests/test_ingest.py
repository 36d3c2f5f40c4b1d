"""Unit tests for file ingestion."""

from io import BytesIO

import pandas as pd
import pytest

from attendance_monitor.ingest import (
    load_enrollment_rows,
    load_table,
    normalize_and_rename_columns,
    normalize_col_name,
    rows_from_dataframe,
)


CSV_EXPORT = (
    "STUDENTCODE,STUDENTNAME,COURSECODE,SECTION,STUDYCODE,CLASSCHECK,FACULTY,ADVISOR_NAME,GPA,Extra\n"
    '6501,Anan,CS101,1,C,"P,A,A,,L",Science,Dr. Wong,2.75,x\n'
    '6502,Nid,CS101,1,l,"P,P",Science,,,y\n'
    ',Nobody,CS101,1,C,"A",Science,Dr. Wong,,z\n'
    '6503,Som,CS102,2,,,Arts,Dr. Arun,3.1,\n'
)


def test_normalize_col_name():
    assert normalize_col_name("  Student_Code ") == "student code"
    assert normalize_col_name("GPA.") == "gpa"
    assert normalize_col_name("Year   Level") == "year level"


def test_normalize_and_rename_columns():
    df = pd.DataFrame(columns=['Student ID', 'Course Code', 'Attendance', 'Unrelated'])
    renamed = normalize_and_rename_columns(df)

    assert list(renamed.columns) == ['student_id', 'course_code', 'raw_attendance']


def test_missing_required_columns():
    df = pd.DataFrame(columns=['Student ID', 'Attendance'])
    with pytest.raises(ValueError, match="course_code"):
        normalize_and_rename_columns(df)


def test_load_csv_export():
    """A typical registrar CSV export becomes enrollment dicts."""
    rows, skipped = load_enrollment_rows(CSV_EXPORT.encode('utf-8'), "export.csv")

    assert skipped == 1
    assert len(rows) == 3

    first = rows[0]
    assert first['student_id'] == '6501'
    assert first['course_code'] == 'CS101'
    assert first['raw_attendance'] == 'P,A,A,,L'
    assert first['student_name'] == 'Anan'
    assert first['advisor_name'] == 'Dr. Wong'
    assert first['gpa'] == pytest.approx(2.75)
    assert 'Extra' not in first

    assert rows[1]['study_mode'] == 'L'
    assert rows[1]['advisor_name'] is None
    assert rows[1]['gpa'] is None

    assert rows[2]['study_mode'] == 'C'
    assert rows[2]['raw_attendance'] == ''


def test_load_csv_with_bom():
    data = "\ufeffStudent ID,Course,Attendance\n1,C1,P\n".encode('utf-8')
    rows, skipped = load_enrollment_rows(data, "bom.CSV")

    assert rows == [{'student_id': '1', 'course_code': 'C1', 'raw_attendance': 'P'}]
    assert skipped == 0


def test_load_xlsx():
    df = pd.DataFrame({
        'Student Code': ['6501'],
        'Course Code': ['CS101'],
        'Section': ['1'],
        'Class Check': ['P,A'],
        'Year Level': ['2'],
    })
    buffer = BytesIO()
    df.to_excel(buffer, index=False, engine='openpyxl')

    rows, skipped = load_enrollment_rows(buffer.getvalue(), "export.xlsx")

    assert skipped == 0
    assert rows[0]['student_id'] == '6501'
    assert rows[0]['section'] == '1'
    assert rows[0]['raw_attendance'] == 'P,A'
    assert rows[0]['year_level'] == 2


def test_rows_strip_excel_float_suffix():
    df = pd.DataFrame({'studentcode': ['6501.0'], 'coursecode': ['CS101'],
                       'section': ['2.0'], 'classcheck': ['P']})
    rows, _ = rows_from_dataframe(df)

    assert rows[0]['student_id'] == '6501'
    assert rows[0]['section'] == '2'


def test_unsupported_file_type():
    with pytest.raises(ValueError, match="Unsupported file type"):
        load_table(b"data", "export.xls")
