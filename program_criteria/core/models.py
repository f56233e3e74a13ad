from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from program_criteria.config import ELECTIVE_PRIORITY, REQUIRED_PRIORITY


class SlotKind(str, Enum):
    REQUIRED = "required"
    ELECTIVE = "elective"

    def default_priority(self) -> int:
        return REQUIRED_PRIORITY if self is SlotKind.REQUIRED else ELECTIVE_PRIORITY


class Semester(str, Enum):
    """Semester codes in programme order (Y1S1 comes first, Y4S2 last)."""
    Y1S1 = "Y1S1"
    Y1S2 = "Y1S2"
    Y2S1 = "Y2S1"
    Y2S2 = "Y2S2"
    Y3S1 = "Y3S1"
    Y3S2 = "Y3S2"
    Y4S1 = "Y4S1"
    Y4S2 = "Y4S2"

    def previous(self) -> Optional["Semester"]:
        order = list(Semester)
        idx = order.index(self)
        return order[idx - 1] if idx > 0 else None


SEMESTERS: List[Semester] = list(Semester)


@dataclass
class Slot:
    id: str
    title: str = ""
    kind: SlotKind = SlotKind.REQUIRED
    # required
    course_name: Optional[str] = None
    min_grade: Optional[str] = None
    # elective
    allowed_courses: List[str] = field(default_factory=list)
    tag: Optional[str] = None
    priority: Optional[int] = None

    def effective_priority(self) -> int:
        return self.priority if self.priority is not None else self.kind.default_priority()


@dataclass
class RuleCondition:
    any_passed: List[str] = field(default_factory=list)
    all_passed: List[str] = field(default_factory=list)


@dataclass
class RuleEffect:
    add_slots: List[Slot] = field(default_factory=list)
    waive_slots_by_title: List[str] = field(default_factory=list)
    waive_courses: List[str] = field(default_factory=list)


@dataclass
class Rule:
    id: str
    name: str = ""
    when: RuleCondition = field(default_factory=RuleCondition)
    then: RuleEffect = field(default_factory=RuleEffect)


@dataclass
class SemesterData:
    slots: List[Slot] = field(default_factory=list)
    rules: List[Rule] = field(default_factory=list)
    checkpoint_label: Optional[str] = None

    @property
    def has_content(self) -> bool:
        return bool(self.slots) or bool(self.rules)


@dataclass(frozen=True)
class SemesterKey:
    year_group: int
    program: str
    semester: Semester

    def describe(self) -> str:
        return f"YearGroup {self.year_group} • {self.program} • {self.semester.value}"


@dataclass
class ProgramMeta:
    display_name: str
    default_pass_grade: Optional[str] = None


@dataclass
class YearGroupSummary:
    year_group: int
    programs: List[str] = field(default_factory=list)


# ---------- Audit ----------
@dataclass
class StudentCourse:
    course: str
    earned_credits: float = 0.0
    grade: str = ""
    credits: float = 0.0
    category: str = ""
    sub_category: str = ""


@dataclass
class StudentRecord:
    application_no: str
    name: str
    program: str
    courses: List[StudentCourse] = field(default_factory=list)


@dataclass
class AuditOutcome:
    application_no: str
    name: str
    program: str
    passed: bool
    missing: List[str] = field(default_factory=list)


# ---------- Resolution ----------
class ResolutionSource(str, Enum):
    SAVED = "saved"
    SIBLING_PROGRAM = "sibling_program"
    PREVIOUS_SEMESTER = "previous_semester"
    PREVIOUS_YEAR_GROUP = "previous_year_group"
    EMPTY = "empty"


@dataclass
class Resolution:
    key: SemesterKey
    data: SemesterData
    source: ResolutionSource
    message: str = ""
    source_key: Optional[SemesterKey] = None

    @property
    def is_prefill(self) -> bool:
        return self.source in (
            ResolutionSource.SIBLING_PROGRAM,
            ResolutionSource.PREVIOUS_SEMESTER,
            ResolutionSource.PREVIOUS_YEAR_GROUP,
        )
