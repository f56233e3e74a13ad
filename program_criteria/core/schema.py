"""
Wire codec for criteria payloads.

The criteria API speaks camelCase JSON and may hand back partial or
hand-edited documents. Everything coming in goes through ``semester_from_json``,
which never raises: anything it cannot make sense of becomes an empty list or
a default value. Outgoing payloads are built with ``semester_to_json``.
"""
import copy
import uuid
from typing import Any, Dict, List, Optional, Set

from program_criteria.core.models import (
    Rule,
    RuleCondition,
    RuleEffect,
    SemesterData,
    Slot,
    SlotKind,
)

SLOT_FIELDS = {
    "title": "title",
    "kind": "kind",
    "courseName": "course_name",
    "minGrade": "min_grade",
    "allowedCourses": "allowed_courses",
    "tag": "tag",
    "priority": "priority",
}


def new_id() -> str:
    return uuid.uuid4().hex


# ---------- small coercions ----------
def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


def _opt_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def coerce_kind(value: Any) -> SlotKind:
    if isinstance(value, SlotKind):
        return value
    try:
        return SlotKind((value or "").strip().lower())
    except (AttributeError, ValueError):
        return SlotKind.REQUIRED


def _priority(value: Any) -> Optional[int]:
    # bool is an int subclass, never a priority
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _id(value: Any, seen: Optional[Set[str]]) -> str:
    if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
        ident = str(value).strip()
    else:
        ident = new_id()
    if seen is not None:
        if ident in seen:
            ident = new_id()
        seen.add(ident)
    return ident


# ---------- decoding ----------
def slot_from_json(payload: Dict[str, Any], seen_ids: Optional[Set[str]] = None) -> Slot:
    kind = coerce_kind(payload.get("kind"))
    priority = _priority(payload.get("priority"))
    return Slot(
        id=_id(payload.get("id"), seen_ids),
        title=_opt_str(payload.get("title")) or "",
        kind=kind,
        course_name=_opt_str(payload.get("courseName")),
        min_grade=_opt_str(payload.get("minGrade")),
        allowed_courses=_str_list(payload.get("allowedCourses")),
        tag=_opt_str(payload.get("tag")),
        priority=priority if priority is not None else kind.default_priority(),
    )


def slots_from_json(value: Any) -> List[Slot]:
    if not isinstance(value, list):
        return []
    seen: Set[str] = set()
    return [slot_from_json(s, seen) for s in value if isinstance(s, dict)]


def condition_from_json(value: Any) -> RuleCondition:
    if not isinstance(value, dict):
        return RuleCondition()
    return RuleCondition(
        any_passed=_str_list(value.get("anyPassed")),
        all_passed=_str_list(value.get("allPassed")),
    )


def effect_from_json(value: Any) -> RuleEffect:
    if not isinstance(value, dict):
        return RuleEffect()
    return RuleEffect(
        add_slots=slots_from_json(value.get("addSlots")),
        waive_slots_by_title=_str_list(value.get("waiveSlotsByTitle")),
        waive_courses=_str_list(value.get("waiveCourses")),
    )


def rule_from_json(payload: Dict[str, Any], seen_ids: Optional[Set[str]] = None) -> Rule:
    return Rule(
        id=_id(payload.get("id"), seen_ids),
        name=_opt_str(payload.get("name")) or "",
        when=condition_from_json(payload.get("when")),
        then=effect_from_json(payload.get("then")),
    )


def semester_from_json(payload: Any) -> SemesterData:
    """Normalise an arbitrary decoded payload into SemesterData."""
    if not isinstance(payload, dict):
        return SemesterData()
    raw_rules = payload.get("rules")
    seen: Set[str] = set()
    rules = [rule_from_json(r, seen) for r in raw_rules if isinstance(r, dict)] if isinstance(raw_rules, list) else []
    return SemesterData(
        slots=slots_from_json(payload.get("slots")),
        rules=rules,
        checkpoint_label=_opt_str(payload.get("checkpointLabel")),
    )


# ---------- encoding ----------
def slot_to_json(slot: Slot) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "id": slot.id,
        "title": slot.title,
        "kind": slot.kind.value,
        "priority": slot.effective_priority(),
    }
    if slot.course_name is not None:
        out["courseName"] = slot.course_name
    if slot.min_grade is not None:
        out["minGrade"] = slot.min_grade
    if slot.allowed_courses or slot.kind is SlotKind.ELECTIVE:
        out["allowedCourses"] = list(slot.allowed_courses)
    if slot.tag is not None:
        out["tag"] = slot.tag
    return out


def condition_to_json(cond: RuleCondition) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if cond.any_passed:
        out["anyPassed"] = list(cond.any_passed)
    if cond.all_passed:
        out["allPassed"] = list(cond.all_passed)
    return out


def effect_to_json(effect: RuleEffect) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if effect.add_slots:
        out["addSlots"] = [slot_to_json(s) for s in effect.add_slots]
    if effect.waive_slots_by_title:
        out["waiveSlotsByTitle"] = list(effect.waive_slots_by_title)
    if effect.waive_courses:
        out["waiveCourses"] = list(effect.waive_courses)
    return out


def rule_to_json(rule: Rule) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "name": rule.name,
        "when": condition_to_json(rule.when),
        "then": effect_to_json(rule.then),
    }


def semester_to_json(data: SemesterData) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "slots": [slot_to_json(s) for s in data.slots],
        "rules": [rule_to_json(r) for r in data.rules],
    }
    if data.checkpoint_label is not None:
        out["checkpointLabel"] = data.checkpoint_label
    return out


# ---------- partial updates ----------
def slot_patch_from_json(payload: Dict[str, Any]) -> Dict[str, Any]:
    """camelCase partial slot -> snake_case fields for EditBuffer.update_slot.

    Unknown keys are dropped; ``id`` can never be patched.
    """
    fields: Dict[str, Any] = {}
    for wire, attr in SLOT_FIELDS.items():
        if wire not in payload:
            continue
        value = payload[wire]
        if attr == "kind":
            fields[attr] = coerce_kind(value)
        elif attr == "allowed_courses":
            fields[attr] = _str_list(value)
        elif attr == "priority":
            fields[attr] = _priority(value)
        elif attr == "title":
            fields[attr] = _opt_str(value) or ""
        else:
            fields[attr] = _opt_str(value)
    return fields


def rule_patch_from_json(payload: Dict[str, Any], current: Optional[Rule] = None) -> Dict[str, Any]:
    """camelCase partial rule -> fields for EditBuffer.update_rule.

    ``when``/``then`` are merged key by key over ``current`` when given, so a
    client can send just ``{"when": {"anyPassed": [...]}}``.
    """
    fields: Dict[str, Any] = {}
    if "name" in payload:
        fields["name"] = _opt_str(payload["name"]) or ""
    if isinstance(payload.get("when"), dict):
        base = condition_to_json(current.when) if current else {}
        fields["when"] = condition_from_json({**base, **payload["when"]})
    if isinstance(payload.get("then"), dict):
        base = effect_to_json(current.then) if current else {}
        fields["then"] = effect_from_json({**base, **payload["then"]})
    return fields


def clone_semester(data: Optional[SemesterData]) -> SemesterData:
    """Deep structural copy, nested when/then and addSlots included."""
    if data is None:
        return SemesterData()
    return copy.deepcopy(data)
