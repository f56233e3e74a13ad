import logging
from typing import Any, BinaryIO, Dict, Iterable, List, Optional, Union

import pandas as pd

from program_criteria.core.models import StudentCourse, StudentRecord

logger = logging.getLogger(__name__)

# Column headers of the registry export, one row per (student, course)
COL_APPLICATION_NO = "Application No"
COL_NAME = "Name"
COL_PROGRAM = "Program"
COL_COURSE = "Course"
COL_CATEGORY = "Category"
COL_SUB_CATEGORY = "Sub-Category"
COL_COURSE_CREDITS = "Course Credits"
COL_EARNED_CREDITS = "Student Earned Credits"
COL_GRADE = "Grade"


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float):
        if pd.isna(value):
            return None
        # numeric application numbers come back from Excel as floats
        if value.is_integer():
            value = int(value)
    text = str(value).strip()
    return text or None


def _number(value: Any) -> float:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if pd.isna(num) else num


def students_from_rows(rows: Iterable[Dict[str, Any]]) -> List[StudentRecord]:
    """Group per-course rows into one StudentRecord per application number.

    Rows missing an application number or a course are skipped. Students keep
    the order in which they first appear.
    """
    students: Dict[str, StudentRecord] = {}
    skipped = 0
    for row in rows:
        app_no = _text(row.get(COL_APPLICATION_NO))
        course = _text(row.get(COL_COURSE))
        if not app_no or not course:
            skipped += 1
            continue
        student = students.get(app_no)
        if student is None:
            student = StudentRecord(
                application_no=app_no,
                name=_text(row.get(COL_NAME)) or "",
                program=_text(row.get(COL_PROGRAM)) or "",
            )
            students[app_no] = student
        student.courses.append(StudentCourse(
            course=course,
            earned_credits=_number(row.get(COL_EARNED_CREDITS)),
            grade=_text(row.get(COL_GRADE)) or "",
            credits=_number(row.get(COL_COURSE_CREDITS)),
            category=_text(row.get(COL_CATEGORY)) or "",
            sub_category=_text(row.get(COL_SUB_CATEGORY)) or "",
        ))
    if skipped:
        logger.info("Skipped %d transcript rows without application number or course", skipped)
    return list(students.values())


def load_workbook(source: Union[str, BinaryIO]) -> List[StudentRecord]:
    """Read the first sheet of an .xlsx transcript export."""
    df = pd.read_excel(source, sheet_name=0, engine="openpyxl")
    return students_from_rows(df.to_dict(orient="records"))
