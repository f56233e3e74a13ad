import logging
from typing import Any, Dict, List, Optional

import requests

from program_criteria.config import AUDIT_API_BASE, HTTP_TIMEOUT
from program_criteria.core.errors import AuditAuthError, AuditError
from program_criteria.core.models import AuditOutcome, Semester, StudentRecord

logger = logging.getLogger(__name__)


def student_to_json(student: StudentRecord) -> Dict[str, Any]:
    return {
        "applicationNo": student.application_no,
        "name": student.name,
        "program": student.program,
        "courses": [
            {
                "course": c.course,
                "earnedCredits": c.earned_credits,
                "grade": c.grade,
                "credits": c.credits,
                "category": c.category,
                "subCategory": c.sub_category,
            }
            for c in student.courses
        ],
    }


def outcome_from_json(payload: Any) -> Optional[AuditOutcome]:
    if not isinstance(payload, dict) or payload.get("applicationNo") is None:
        return None
    missing = payload.get("missing")
    return AuditOutcome(
        application_no=str(payload["applicationNo"]),
        name=str(payload.get("name") or ""),
        program=str(payload.get("program") or ""),
        passed=payload.get("passed") is True,
        missing=[str(m) for m in missing] if isinstance(missing, list) else [],
    )


def outcome_to_json(outcome: AuditOutcome) -> Dict[str, Any]:
    return {
        "applicationNo": outcome.application_no,
        "name": outcome.name,
        "program": outcome.program,
        "passed": outcome.passed,
        "missing": list(outcome.missing),
    }


def summarise(outcomes: List[AuditOutcome]) -> Dict[str, int]:
    passed = sum(1 for o in outcomes if o.passed)
    return {"total": len(outcomes), "passed": passed, "failed": len(outcomes) - passed}


class AuditClient:
    """Shapes requests for the external audit engine and reads its answers.

    The audit itself (slots/rules vs. transcripts) happens on the other side.
    """

    def __init__(self, base_url: str = AUDIT_API_BASE, token: Optional[str] = None,
                 session: Optional[requests.Session] = None, timeout: float = HTTP_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    def run(self, year_group: int, semester: Semester, students: List[StudentRecord]) -> List[AuditOutcome]:
        payload = {
            "yearGroup": year_group,
            "semester": Semester(semester).value,
            "students": [student_to_json(s) for s in students],
        }
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            resp = self.session.post(f"{self.base_url}/audit/run", json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning("Audit request failed: %s", e)
            raise AuditError() from e

        try:
            body = resp.json()
        except ValueError:
            body = None
        if resp.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            message = message if isinstance(message, str) else None
            if resp.status_code in (401, 403):
                raise AuditAuthError(message, resp.status_code)
            raise AuditError(message, resp.status_code)

        if isinstance(body, dict):
            body = body.get("results")
        if not isinstance(body, list):
            logger.info("Audit engine returned no result list")
            return []
        outcomes = [outcome_from_json(x) for x in body]
        return [o for o in outcomes if o is not None]
