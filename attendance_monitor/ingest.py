"""CSV/xlsx file loading and column normalization into enrollment inputs."""

import logging
import re
from io import BytesIO
from typing import Dict, List, Optional, Tuple

import pandas as pd

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('student_id', 'course_code', 'raw_attendance')

# Target field -> accepted header variations (after normalize_col_name)
COLUMN_VARIATIONS = {
    'student_id': ['studentcode', 'student code', 'student id', 'studentid', 'student', 'student number'],
    'course_code': ['coursecode', 'course code', 'course id', 'courseid', 'course'],
    'section': ['section', 'sec', 'section no', 'group'],
    'study_mode': ['studycode', 'study code', 'study mode', 'studymode', 'study type'],
    'raw_attendance': ['classcheck', 'class check', 'attendance', 'attendance codes', 'checks'],
    'student_name': ['student name', 'studentname', 'name'],
    'faculty': ['faculty', 'faculty name'],
    'department': ['department', 'dept', 'department name'],
    'advisor_name': ['advisor name', 'advisorname', 'advisor'],
    'year_level': ['year level', 'yearlevel', 'year'],
    'gpa': ['gpa', 'gpax'],
    'course_name': ['course name', 'coursename', 'subject name'],
    'instructor': ['instructor', 'instructor name', 'lecturer', 'teacher'],
}


def normalize_col_name(col_name) -> str:
    """Normalize a column name for matching."""
    if pd.isna(col_name):
        return ""
    normalized = str(col_name).strip().lower().replace('_', ' ')
    normalized = re.sub(r'[.,%#]', '', normalized)  # Remove dots, commas, %, #
    normalized = re.sub(r'\s+', ' ', normalized)  # Normalize whitespace
    return normalized.strip()


def normalize_and_rename_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Rename known header variations to enrollment field names.

    Unknown columns are dropped. When two headers map to the same field
    the first one wins.

    Raises:
        ValueError: if a required column cannot be found
    """
    rename = {}
    for orig_col in df.columns:
        normalized = normalize_col_name(orig_col)
        for target, variations in COLUMN_VARIATIONS.items():
            if normalized in variations and target not in rename.values():
                rename[orig_col] = target
                break

    missing = [field for field in REQUIRED_FIELDS if field not in rename.values()]
    if missing:
        raise ValueError(
            f"Missing required columns: {', '.join(missing)}. Found: {list(df.columns)}"
        )

    logger.debug("Column mapping: %s", rename)
    return df[list(rename)].rename(columns=rename)


def load_table(file_bytes: bytes, filename: str) -> pd.DataFrame:
    """
    Read an uploaded .csv or .xlsx file with every cell as a string.

    Args:
        file_bytes: Raw file contents
        filename: Used only to pick the reader

    Returns:
        DataFrame with empty cells as ''
    """
    name = filename.lower()
    if name.endswith('.xlsx'):
        df = pd.read_excel(BytesIO(file_bytes), dtype=str, engine='openpyxl')
    elif name.endswith('.csv'):
        df = pd.read_csv(BytesIO(file_bytes), dtype=str, keep_default_na=False, encoding='utf-8-sig')
    else:
        raise ValueError("Unsupported file type. Please upload a .csv or .xlsx file")
    return df.fillna('')


def _to_int(value: str) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _to_float(value: str) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def rows_from_dataframe(df: pd.DataFrame) -> Tuple[List[Dict], int]:
    """
    Turn a raw table into enrollment dicts.

    Rows without a student id or course code are skipped.

    Returns:
        Tuple of (rows, skipped_count)
    """
    df = normalize_and_rename_columns(df)
    rows = []
    skipped = 0

    for row in df.to_dict(orient='records'):
        values = {k: str(v).strip() for k, v in row.items()}
        if not values.get('student_id') or not values.get('course_code'):
            skipped += 1
            continue

        # Excel turns numeric ids into '6501234.0'
        for key in ('student_id', 'section'):
            if values.get(key, '').endswith('.0'):
                values[key] = values[key][:-2]

        if 'study_mode' in values:
            values['study_mode'] = values['study_mode'].upper() or 'C'
        if 'year_level' in values:
            values['year_level'] = _to_int(values['year_level'])
        if 'gpa' in values:
            values['gpa'] = _to_float(values['gpa'])

        # Blank descriptive cells become None, the attendance string stays as-is
        cleaned = {
            k: (v if v != '' or k in ('raw_attendance', 'section') else None)
            for k, v in values.items()
        }
        rows.append(cleaned)

    if skipped:
        logger.info("Skipped %d rows without student id or course code", skipped)
    return rows, skipped


def load_enrollment_rows(file_bytes: bytes, filename: str) -> Tuple[List[Dict], int]:
    """
    Load an uploaded file into enrollment dicts ready for the engine.

    Shape validation happens in the engine so that a bad row rejects the
    whole file.

    Returns:
        Tuple of (rows, skipped_row_count)
    """
    df = load_table(file_bytes, filename)
    return rows_from_dataframe(df)
