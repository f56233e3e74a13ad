import copy
import dataclasses
from typing import Any, Dict, Optional, Union

from program_criteria.config import DEFAULT_ELECTIVE_TAG, DEFAULT_PASS_GRADE
from program_criteria.core.models import Rule, RuleCondition, RuleEffect, SemesterData, Slot, SlotKind
from program_criteria.core.schema import clone_semester, coerce_kind, condition_from_json, effect_from_json, new_id

_SLOT_FIELDS = {f.name for f in dataclasses.fields(Slot)} - {"id"}
_RULE_FIELDS = {f.name for f in dataclasses.fields(Rule)} - {"id"}


def _known(fields: Dict[str, Any], allowed) -> Dict[str, Any]:
    # copied so caller-owned lists never end up inside a snapshot
    return copy.deepcopy({k: v for k, v in fields.items() if k in allowed})


class EditBuffer:
    """
    The criteria currently being edited.

    Holds a private copy of whatever it was seeded with. Every mutation builds
    a new SemesterData (new lists, replaced entries) and swaps it in, so a
    snapshot handed out earlier never changes underneath its holder.
    Mutations referencing an unknown id are no-ops.
    """

    def __init__(self, initial: Optional[SemesterData] = None, default_pass_grade: str = DEFAULT_PASS_GRADE):
        self.default_pass_grade = default_pass_grade
        self.snapshot: SemesterData = clone_semester(initial)

    def replace(self, data: Optional[SemesterData]) -> SemesterData:
        self.snapshot = clone_semester(data)
        return self.snapshot

    def _swap(self, **changes) -> SemesterData:
        self.snapshot = dataclasses.replace(self.snapshot, **changes)
        return self.snapshot

    def find_slot(self, slot_id: str) -> Optional[Slot]:
        return next((s for s in self.snapshot.slots if s.id == slot_id), None)

    def find_rule(self, rule_id: str) -> Optional[Rule]:
        return next((r for r in self.snapshot.rules if r.id == rule_id), None)

    # ---------- slots ----------
    def add_slot(self, kind: Union[SlotKind, str] = SlotKind.REQUIRED, **defaults) -> SemesterData:
        kind = coerce_kind(kind)
        if kind is SlotKind.REQUIRED:
            fields: Dict[str, Any] = {
                "title": "",
                "course_name": "",
                "min_grade": self.default_pass_grade,
                "priority": kind.default_priority(),
            }
        else:
            tag = defaults.get("tag") or DEFAULT_ELECTIVE_TAG
            count = sum(1 for s in self.snapshot.slots if s.tag == tag) + 1
            fields = {
                "title": f"{tag} #{count}",
                "allowed_courses": [],
                "min_grade": self.default_pass_grade,
                "tag": tag,
                "priority": kind.default_priority(),
            }
        fields.update({k: v for k, v in _known(defaults, _SLOT_FIELDS - {"kind"}).items() if v is not None})
        slot = Slot(id=new_id(), kind=kind, **fields)
        return self._swap(slots=[*self.snapshot.slots, slot])

    def update_slot(self, slot_id: str, **fields) -> SemesterData:
        patch = _known(fields, _SLOT_FIELDS)
        if "kind" in patch:
            try:
                patch["kind"] = SlotKind(patch["kind"])
            except ValueError:
                del patch["kind"]
        if self.find_slot(slot_id) is None or not patch:
            return self.snapshot
        return self._swap(slots=[dataclasses.replace(s, **patch) if s.id == slot_id else s
                                 for s in self.snapshot.slots])

    def remove_slot(self, slot_id: str) -> SemesterData:
        if self.find_slot(slot_id) is None:
            return self.snapshot
        return self._swap(slots=[s for s in self.snapshot.slots if s.id != slot_id])

    # ---------- rules ----------
    def add_rule(self, name: str = "") -> SemesterData:
        rule = Rule(id=new_id(), name=name)
        return self._swap(rules=[*self.snapshot.rules, rule])

    def update_rule(self, rule_id: str, **fields) -> SemesterData:
        patch = _known(fields, _RULE_FIELDS)
        # wire-form when/then dicts are accepted too
        if "when" in patch and not isinstance(patch["when"], RuleCondition):
            patch["when"] = condition_from_json(patch["when"])
        if "then" in patch and not isinstance(patch["then"], RuleEffect):
            patch["then"] = effect_from_json(patch["then"])
        if self.find_rule(rule_id) is None or not patch:
            return self.snapshot
        return self._swap(rules=[dataclasses.replace(r, **patch) if r.id == rule_id else r
                                 for r in self.snapshot.rules])

    def remove_rule(self, rule_id: str) -> SemesterData:
        if self.find_rule(rule_id) is None:
            return self.snapshot
        return self._swap(rules=[r for r in self.snapshot.rules if r.id != rule_id])
