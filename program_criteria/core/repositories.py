import logging
import threading
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote

import requests

from program_criteria.config import CRITERIA_API_BASE, HTTP_TIMEOUT
from program_criteria.core.errors import (
    CriteriaSaveError,
    StoreAuthError,
    StoreRequestError,
    StoreUnavailableError,
)
from program_criteria.core.models import ProgramMeta, SemesterData, SemesterKey, YearGroupSummary
from program_criteria.core.schema import clone_semester, semester_from_json, semester_to_json

logger = logging.getLogger(__name__)


class CriteriaStore(Protocol):
    def fetch(self, key: SemesterKey) -> SemesterData:
        ...

    def save(self, key: SemesterKey, data: SemesterData) -> None:
        ...

    def list_year_groups(self) -> List[YearGroupSummary]:
        ...

    def list_programs(self, year_group: int) -> List[ProgramMeta]:
        ...

    def upsert_year_group(self, year_group: int) -> None:
        ...

    def upsert_program(self, year_group: int, meta: ProgramMeta) -> None:
        ...


# ---------- wire helpers for reference data ----------
def program_meta_from_json(payload: Any) -> Optional[ProgramMeta]:
    if not isinstance(payload, dict) or not isinstance(payload.get("displayName"), str):
        return None
    grade = payload.get("defaultPassGrade")
    return ProgramMeta(display_name=payload["displayName"], default_pass_grade=grade if isinstance(grade, str) else None)


def program_meta_to_json(meta: ProgramMeta) -> Dict[str, Any]:
    out: Dict[str, Any] = {"displayName": meta.display_name}
    if meta.default_pass_grade is not None:
        out["defaultPassGrade"] = meta.default_pass_grade
    return out


def year_group_from_json(payload: Any) -> Optional[YearGroupSummary]:
    if not isinstance(payload, dict):
        return None
    try:
        yg = int(payload.get("yearGroup"))
    except (TypeError, ValueError):
        return None
    programs = payload.get("programs")
    programs = [p for p in programs if isinstance(p, str)] if isinstance(programs, list) else []
    return YearGroupSummary(year_group=yg, programs=programs)


class InMemoryCriteriaStore:
    """
    Process-local store with the same surface as the HTTP client.

    Used for local development (CRITERIA_STORE=memory) and in tests. Stored
    SemesterData objects are handed out by reference, so callers that intend
    to edit must clone first (the resolver always does).
    """

    def __init__(self):
        self._criteria: Dict[SemesterKey, SemesterData] = {}
        self._programs: Dict[int, Dict[str, ProgramMeta]] = {}
        self._lock = threading.Lock()
        self.fetch_log: List[SemesterKey] = []
        self.save_log: List[SemesterKey] = []

    def fetch(self, key: SemesterKey) -> SemesterData:
        with self._lock:
            self.fetch_log.append(key)
            return self._criteria.get(key) or SemesterData()

    def save(self, key: SemesterKey, data: SemesterData) -> None:
        with self._lock:
            self.save_log.append(key)
            self._criteria[key] = clone_semester(data)
            self._programs.setdefault(key.year_group, {}).setdefault(key.program, ProgramMeta(display_name=key.program))

    def list_year_groups(self) -> List[YearGroupSummary]:
        with self._lock:
            return [
                YearGroupSummary(year_group=yg, programs=sorted(progs))
                for yg, progs in sorted(self._programs.items())
            ]

    def list_programs(self, year_group: int) -> List[ProgramMeta]:
        with self._lock:
            return list(self._programs.get(year_group, {}).values())

    def upsert_year_group(self, year_group: int) -> None:
        with self._lock:
            self._programs.setdefault(year_group, {})

    def upsert_program(self, year_group: int, meta: ProgramMeta) -> None:
        with self._lock:
            self._programs.setdefault(year_group, {})[meta.display_name] = meta


class HttpCriteriaStore:
    """Client for the criteria REST API.

    The bearer token is passed in explicitly; nothing is read from globals.
    """

    def __init__(
        self,
        base_url: str = CRITERIA_API_BASE,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = HTTP_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    # ---------- plumbing ----------
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def _criteria_url(self, key: SemesterKey) -> str:
        return (
            f"{self.base_url}/criteria/{key.year_group}/"
            f"{quote(key.program, safe='')}/{quote(key.semester.value, safe='')}"
        )

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            resp = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.warning("%s %s failed: %s", method, url, e)
            raise StoreUnavailableError() from e
        return resp

    @staticmethod
    def _message(resp: requests.Response) -> Optional[str]:
        try:
            body = resp.json()
        except ValueError:
            return None
        if isinstance(body, dict) and isinstance(body.get("message"), str):
            return body["message"]
        return None

    def _check(self, resp: requests.Response) -> None:
        if resp.status_code < 400:
            return
        message = self._message(resp)
        logger.warning("%s %s -> %s %s", resp.request.method if resp.request else "?", resp.url, resp.status_code, message or "")
        if resp.status_code in (401, 403):
            raise StoreAuthError(message, resp.status_code)
        if resp.status_code >= 500:
            raise StoreUnavailableError(message, resp.status_code)
        raise StoreRequestError(message, resp.status_code)

    @staticmethod
    def _json(resp: requests.Response) -> Any:
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return None

    # ---------- criteria ----------
    def fetch(self, key: SemesterKey) -> SemesterData:
        resp = self._request("GET", self._criteria_url(key))
        if resp.status_code == 404:
            return SemesterData()
        self._check(resp)
        return semester_from_json(self._json(resp))

    def save(self, key: SemesterKey, data: SemesterData) -> None:
        try:
            resp = self._request("POST", self._criteria_url(key), json=semester_to_json(data))
        except StoreUnavailableError as e:
            raise CriteriaSaveError() from e
        if resp.status_code >= 400:
            logger.warning("Save of %s rejected with %s", key.describe(), resp.status_code)
            raise CriteriaSaveError(self._message(resp), resp.status_code)

    # ---------- reference data ----------
    def list_year_groups(self) -> List[YearGroupSummary]:
        resp = self._request("GET", f"{self.base_url}/year-groups")
        self._check(resp)
        body = self._json(resp)
        items = [year_group_from_json(x) for x in body] if isinstance(body, list) else []
        return [x for x in items if x is not None]

    def list_programs(self, year_group: int) -> List[ProgramMeta]:
        resp = self._request("GET", f"{self.base_url}/programs/{year_group}")
        self._check(resp)
        body = self._json(resp)
        items = [program_meta_from_json(x) for x in body] if isinstance(body, list) else []
        return [x for x in items if x is not None]

    def upsert_year_group(self, year_group: int) -> None:
        self._check(self._request("POST", f"{self.base_url}/year-groups", json={"yearGroup": year_group}))

    def upsert_program(self, year_group: int, meta: ProgramMeta) -> None:
        self._check(self._request("POST", f"{self.base_url}/programs/{year_group}", json=program_meta_to_json(meta)))
