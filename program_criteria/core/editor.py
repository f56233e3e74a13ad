"""
Editing session for one user: current selection, the edit buffer and the
advisory message shown above it.

Selection rules:
  * year group or semester change -> full cascade, no lateral hint
  * program change -> cascade with the program being left as the hint

While a resolution is in flight the session reports ``loading`` and refuses to
save (the buffer still holds the previous selection's data).

Resolutions run outside the session lock. A result is only applied if the
selection (and request number) it was issued for is still current; anything
else is dropped. Saves are serialised per semester key through a shared
``KeyedLocks`` registry.
"""
import logging
import threading
import time
import uuid
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Set, Tuple

from program_criteria.config import MAX_SESSIONS, SESSION_TTL
from program_criteria.core.buffer import EditBuffer
from program_criteria.core.engine import CascadeResolver
from program_criteria.core.errors import CriteriaSaveError, SaveInProgressError, StoreError
from program_criteria.core.models import Resolution, ResolutionSource, Semester, SemesterData, SemesterKey
from program_criteria.core.repositories import CriteriaStore
from program_criteria.core.schema import semester_to_json

logger = logging.getLogger(__name__)

SELECT_PROGRAM_MESSAGE = "Select a Program to load."
SAVED_MESSAGE = "Saved."
STILL_LOADING_MESSAGE = "Criteria are still loading."

Selection = Tuple[int, str, Semester]


class KeyedLocks:
    """Non-blocking per-key claims. A key is only tracked while it is held."""

    def __init__(self):
        self._held: Set[SemesterKey] = set()
        self._guard = threading.Lock()

    def try_acquire(self, key: SemesterKey) -> bool:
        with self._guard:
            if key in self._held:
                return False
            self._held.add(key)
            return True

    def release(self, key: SemesterKey) -> None:
        with self._guard:
            self._held.discard(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._held)


class CriteriaEditor:
    def __init__(
        self,
        store: CriteriaStore,
        year_group: int,
        program: str,
        semester: Semester,
        resolver: Optional[CascadeResolver] = None,
        save_locks: Optional[KeyedLocks] = None,
        default_pass_grade: Optional[str] = None,
    ):
        self.store = store
        self.resolver = resolver or CascadeResolver(store)
        self.save_locks = save_locks or KeyedLocks()
        self.year_group = int(year_group)
        self.program = program or ""
        self.semester = Semester(semester)

        self.buffer = EditBuffer(default_pass_grade=default_pass_grade) if default_pass_grade else EditBuffer()
        self.message = ""
        self.source: Optional[ResolutionSource] = None
        self.source_key: Optional[SemesterKey] = None
        self.load_error: Optional[StoreError] = None

        self._lock = threading.RLock()
        self._seq = 0
        self._pending: Optional[Tuple[Selection, int]] = None

    # ---------- selection ----------
    @property
    def selection(self) -> Selection:
        return (self.year_group, self.program.strip(), self.semester)

    @property
    def key(self) -> SemesterKey:
        yg, program, sem = self.selection
        return SemesterKey(yg, program, sem)

    @property
    def can_save(self) -> bool:
        return bool(self.program.strip()) and self.load_error is None and not self.loading

    def select(self, year_group: Optional[int] = None, program: Optional[str] = None,
               semester: Optional[Semester] = None) -> Optional[Resolution]:
        """Apply a selection change and re-resolve. Returns None if nothing changed."""
        with self._lock:
            hint = None
            changed = False
            if year_group is not None and int(year_group) != self.year_group:
                self.year_group = int(year_group)
                changed = True
            if semester is not None and Semester(semester) != self.semester:
                self.semester = Semester(semester)
                changed = True
            if program is not None and program != self.program:
                hint = self.program
                self.program = program
                changed = True
            if not changed:
                return None
            pending = self._begin_load()
        return self._resolve(pending, previous_program=hint)

    def reload(self) -> Optional[Resolution]:
        return self.refresh()

    def refresh(self, previous_program: Optional[str] = None) -> Optional[Resolution]:
        with self._lock:
            pending = self._begin_load()
        return self._resolve(pending, previous_program=previous_program)

    @property
    def loading(self) -> bool:
        return self._pending is not None

    def _begin_load(self) -> Optional[Tuple[Tuple[Selection, int], SemesterKey]]:
        # Caller holds self._lock.
        self._seq += 1
        if not self.program.strip():
            self._pending = None
            self._apply_empty(SELECT_PROGRAM_MESSAGE)
            return None
        ticket = (self.selection, self._seq)
        self._pending = ticket
        return ticket, self.key

    def _resolve(self, pending, previous_program: Optional[str] = None) -> Optional[Resolution]:
        if pending is None:
            return None
        ticket, key = pending
        try:
            resolution = self.resolver.resolve(key, previous_program=previous_program)
        except StoreError as e:
            with self._lock:
                if not self._is_current(ticket):
                    logger.info("Dropping failed load for %s (selection moved on)", key.describe())
                    return None
                logger.warning("Loading %s failed: %s", key.describe(), e.message)
                self._pending = None
                self._apply_empty(e.message)
                self.load_error = e
            return None
        except Exception:
            with self._lock:
                if self._is_current(ticket):
                    self._pending = None
            raise

        with self._lock:
            if not self._is_current(ticket):
                logger.info("Dropping stale resolution for %s", key.describe())
                return None
            self._pending = None
            self.buffer.replace(resolution.data)
            self.message = resolution.message
            self.source = resolution.source
            self.source_key = resolution.source_key
            self.load_error = None
        return resolution

    def _is_current(self, ticket) -> bool:
        return ticket == (self.selection, self._seq)

    def _apply_empty(self, message: str) -> None:
        self.buffer.replace(None)
        self.message = message
        self.source = None
        self.source_key = None
        self.load_error = None

    def edit(self, change: Callable[[EditBuffer], SemesterData]) -> SemesterData:
        """Run one buffer mutation under the session lock."""
        with self._lock:
            return change(self.buffer)

    # ---------- save ----------
    def save(self) -> None:
        """Write the buffer under the selected key (never under a prefill source)."""
        with self._lock:
            if not self.program.strip():
                self.message = "Please select a Program before saving."
                raise CriteriaSaveError(self.message)
            if self.load_error is not None:
                self.message = "Criteria could not be loaded; reload before saving."
                raise CriteriaSaveError(self.message)
            if self.loading:
                raise CriteriaSaveError(STILL_LOADING_MESSAGE, 409)
            key = self.key
            data = self.buffer.snapshot
            selection = self.selection

        if not self.save_locks.try_acquire(key):
            err = SaveInProgressError()
            logger.info("Refusing overlapping save for %s", key.describe())
            self._set_message_if(selection, err.message)
            raise err
        try:
            self.store.save(key, data)
        except CriteriaSaveError as e:
            logger.warning("Saving %s failed: %s", key.describe(), e.message)
            self._set_message_if(selection, e.message)
            raise
        except StoreError as e:
            logger.warning("Saving %s failed: %s", key.describe(), e.message)
            self._set_message_if(selection, e.message)
            raise CriteriaSaveError(e.message, e.status_code) from e
        finally:
            self.save_locks.release(key)

        with self._lock:
            if self.selection == selection:
                self.message = SAVED_MESSAGE
                self.source = ResolutionSource.SAVED
                self.source_key = None
        logger.info("Saved %s (%d slots, %d rules)", key.describe(), len(data.slots), len(data.rules))

    def _set_message_if(self, selection: Selection, message: str) -> None:
        with self._lock:
            if self.selection == selection:
                self.message = message

    # ---------- presentation ----------
    def view(self) -> Dict[str, Any]:
        with self._lock:
            source_key = None
            if self.source_key is not None:
                source_key = {
                    "year_group": self.source_key.year_group,
                    "program": self.source_key.program,
                    "semester": self.source_key.semester.value,
                }
            program = self.program.strip()
            return {
                "year_group": self.year_group,
                "program": program,
                "semester": self.semester.value,
                "title": f"Program Criteria: YearGroup {self.year_group} • {program or '(set Program)'} • {self.semester.value}",
                "data": semester_to_json(self.buffer.snapshot),
                "message": self.message,
                "source": self.source.value if self.source else None,
                "source_key": source_key,
                "can_save": self.can_save,
                "loading": self.loading,
                "load_error": self.load_error is not None,
            }


class EditorSessions:
    """Open editors by session id, least recently used first.

    Sessions idle for longer than ``ttl`` seconds are dropped on the next
    access, and the oldest ones go once more than ``max_sessions`` are open.
    """

    def __init__(self, max_sessions: int = MAX_SESSIONS, ttl: float = SESSION_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self.max_sessions = max_sessions
        self.ttl = ttl
        self.clock = clock
        self._items: "OrderedDict[str, Tuple[CriteriaEditor, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def add(self, editor: CriteriaEditor) -> str:
        sid = uuid.uuid4().hex
        with self._lock:
            now = self.clock()
            self._expire(now)
            self._items[sid] = (editor, now)
            while len(self._items) > self.max_sessions:
                old, _ = self._items.popitem(last=False)
                logger.info("Closing session %s (too many open)", old)
        return sid

    def get(self, sid: str) -> Optional[CriteriaEditor]:
        with self._lock:
            now = self.clock()
            self._expire(now)
            entry = self._items.get(sid)
            if entry is None:
                return None
            self._items[sid] = (entry[0], now)
            self._items.move_to_end(sid)
            return entry[0]

    def discard(self, sid: str) -> None:
        with self._lock:
            self._items.pop(sid, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _expire(self, now: float) -> None:
        while self._items:
            sid, (_, seen) = next(iter(self._items.items()))
            if now - seen <= self.ttl:
                break
            del self._items[sid]
            logger.info("Closing idle session %s", sid)
