import logging
from typing import Any, Dict, List, Optional

import requests
import uvicorn
from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from program_criteria.audit.client import AuditClient, outcome_to_json, summarise
from program_criteria.audit.loaders import load_workbook
from program_criteria.config import (
    CRITERIA_STORE,
    GRADES,
    LOG_LEVEL,
    PROGRAM_OPTIONS,
    YEAR_GROUP_OPTIONS,
)
from program_criteria.core.editor import CriteriaEditor, EditorSessions, KeyedLocks
from program_criteria.core.errors import (
    SaveInProgressError,
    StoreAuthError,
    StoreError,
    StoreUnavailableError,
)
from program_criteria.core.models import ProgramMeta, SEMESTERS, Semester, SlotKind
from program_criteria.core.repositories import (
    CriteriaStore,
    HttpCriteriaStore,
    InMemoryCriteriaStore,
    program_meta_to_json,
)
from program_criteria.core.schema import rule_patch_from_json, slot_patch_from_json

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Program Criteria")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One HTTP connection pool for every outgoing call; tokens are per request
HTTP = requests.Session()
MEMORY_STORE = InMemoryCriteriaStore()

SESSIONS = EditorSessions()
SAVE_LOCKS = KeyedLocks()


# --------- Dependencies ----------
def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_store(token: Optional[str] = Depends(bearer_token)) -> CriteriaStore:
    if CRITERIA_STORE == "memory":
        return MEMORY_STORE
    return HttpCriteriaStore(token=token, session=HTTP)


def get_audit_client(token: Optional[str] = Depends(bearer_token)) -> AuditClient:
    return AuditClient(token=token, session=HTTP)


def get_editor(sid: str) -> CriteriaEditor:
    editor = SESSIONS.get(sid)
    if editor is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {sid}")
    return editor


# --------- Errors ----------
def status_for(err: StoreError) -> int:
    if isinstance(err, SaveInProgressError):
        return status.HTTP_409_CONFLICT
    if isinstance(err, StoreAuthError):
        return err.status_code or status.HTTP_401_UNAUTHORIZED
    if err.status_code and 400 <= err.status_code < 500:
        return err.status_code
    if isinstance(err, StoreUnavailableError) or err.status_code:
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(StoreError)
def store_error_handler(request, exc: StoreError):
    return JSONResponse(status_code=status_for(exc), content={"detail": exc.message})


# --------- Request models ----------
class SessionCreate(BaseModel):
    year_group: int
    program: str
    semester: Semester = Semester.Y1S1


class SelectionUpdate(BaseModel):
    year_group: Optional[int] = None
    program: Optional[str] = None
    semester: Optional[Semester] = None


class SlotCreate(BaseModel):
    kind: SlotKind = SlotKind.REQUIRED
    title: Optional[str] = None
    tag: Optional[str] = None
    priority: Optional[int] = None


class RuleCreate(BaseModel):
    name: str = ""


class YearGroupInput(BaseModel):
    year_group: int


class ProgramInput(BaseModel):
    display_name: str
    default_pass_grade: Optional[str] = None


# --------- Reference data ----------
@app.get("/options")
def options() -> Dict[str, Any]:
    return {
        "semesters": [s.value for s in SEMESTERS],
        "year_groups": YEAR_GROUP_OPTIONS,
        "programs": PROGRAM_OPTIONS,
        "grades": GRADES,
    }


@app.get("/year-groups")
def year_groups(store: CriteriaStore = Depends(get_store)) -> List[Dict[str, Any]]:
    return [{"yearGroup": yg.year_group, "programs": yg.programs} for yg in store.list_year_groups()]


@app.post("/year-groups")
def add_year_group(body: YearGroupInput, store: CriteriaStore = Depends(get_store)):
    store.upsert_year_group(body.year_group)
    return {"ok": True}


@app.get("/programs/{year_group}")
def programs(year_group: int, store: CriteriaStore = Depends(get_store)) -> List[Dict[str, Any]]:
    return [program_meta_to_json(p) for p in store.list_programs(year_group)]


@app.post("/programs/{year_group}")
def add_program(year_group: int, body: ProgramInput, store: CriteriaStore = Depends(get_store)):
    store.upsert_program(year_group, ProgramMeta(body.display_name, body.default_pass_grade))
    return {"ok": True}


# --------- Criteria editing sessions ----------
@app.post("/sessions", status_code=status.HTTP_201_CREATED)
def create_session(body: SessionCreate, store: CriteriaStore = Depends(get_store)) -> Dict[str, Any]:
    editor = CriteriaEditor(store, body.year_group, body.program, body.semester, save_locks=SAVE_LOCKS)
    editor.reload()
    sid = SESSIONS.add(editor)
    logger.info("Opened session %s for %s", sid, editor.key.describe())
    return {"session_id": sid, **editor.view()}


@app.get("/sessions/{sid}")
def get_session(editor: CriteriaEditor = Depends(get_editor)):
    return editor.view()


@app.delete("/sessions/{sid}", status_code=status.HTTP_204_NO_CONTENT)
def close_session(sid: str):
    SESSIONS.discard(sid)


@app.put("/sessions/{sid}/selection")
def change_selection(body: SelectionUpdate, editor: CriteriaEditor = Depends(get_editor)):
    editor.select(year_group=body.year_group, program=body.program, semester=body.semester)
    return editor.view()


@app.post("/sessions/{sid}/reload")
def reload_session(editor: CriteriaEditor = Depends(get_editor)):
    editor.reload()
    return editor.view()


@app.post("/sessions/{sid}/save")
def save_session(editor: CriteriaEditor = Depends(get_editor)):
    editor.save()
    return editor.view()


@app.post("/sessions/{sid}/slots")
def add_slot(body: SlotCreate, editor: CriteriaEditor = Depends(get_editor)):
    defaults = body.model_dump(exclude={"kind"}, exclude_none=True)
    editor.edit(lambda buf: buf.add_slot(body.kind, **defaults))
    return editor.view()


@app.patch("/sessions/{sid}/slots/{slot_id}")
def update_slot(slot_id: str, body: Dict[str, Any], editor: CriteriaEditor = Depends(get_editor)):
    fields = slot_patch_from_json(body)
    editor.edit(lambda buf: buf.update_slot(slot_id, **fields))
    return editor.view()


@app.delete("/sessions/{sid}/slots/{slot_id}")
def remove_slot(slot_id: str, editor: CriteriaEditor = Depends(get_editor)):
    editor.edit(lambda buf: buf.remove_slot(slot_id))
    return editor.view()


@app.post("/sessions/{sid}/rules")
def add_rule(body: RuleCreate, editor: CriteriaEditor = Depends(get_editor)):
    editor.edit(lambda buf: buf.add_rule(body.name))
    return editor.view()


@app.patch("/sessions/{sid}/rules/{rule_id}")
def update_rule(rule_id: str, body: Dict[str, Any], editor: CriteriaEditor = Depends(get_editor)):
    editor.edit(lambda buf: buf.update_rule(rule_id, **rule_patch_from_json(body, buf.find_rule(rule_id))))
    return editor.view()


@app.delete("/sessions/{sid}/rules/{rule_id}")
def remove_rule(rule_id: str, editor: CriteriaEditor = Depends(get_editor)):
    editor.edit(lambda buf: buf.remove_rule(rule_id))
    return editor.view()


# --------- Audit ----------
@app.post("/audit/run")
def run_audit(
    year_group: int = Form(...),
    semester: Semester = Form(...),
    file: UploadFile = File(...),
    client: AuditClient = Depends(get_audit_client),
):
    try:
        students = load_workbook(file.file)
    except Exception as e:
        logger.warning("Could not read uploaded workbook %s: %s", file.filename, e)
        raise HTTPException(status_code=400, detail="Could not read the uploaded Excel file")
    if not students:
        raise HTTPException(status_code=400, detail="Please upload an Excel sheet first.")

    try:
        outcomes = client.run(year_group, semester, students)
    except StoreError:
        raise
    except Exception as e:
        logger.exception("Audit failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Audit failed", "details": str(e)},
        )

    return {
        "students": len(students),
        "results": [outcome_to_json(o) for o in outcomes],
        "summary": summarise(outcomes),
        "message": "Audit completed." if outcomes else "No results returned.",
    }


if __name__ == "__main__":
    logger.info("Starting Uvicorn server...")
    uvicorn.run("program_criteria.app:app", host="0.0.0.0", port=8000, reload=True)
