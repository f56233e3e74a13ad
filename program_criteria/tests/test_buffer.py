from factories import make_data, make_key
from program_criteria.core.buffer import EditBuffer
from program_criteria.core.engine import CascadeResolver
from program_criteria.core.models import RuleCondition, RuleEffect, SlotKind
from program_criteria.core.schema import semester_to_json


def test_add_required_slot_defaults():
    buf = EditBuffer()
    snap = buf.add_slot(SlotKind.REQUIRED)
    slot = snap.slots[0]
    assert slot.id
    assert slot.kind is SlotKind.REQUIRED
    assert (slot.title, slot.course_name, slot.min_grade, slot.priority) == ("", "", "D", 0)


def test_elective_titles_count_per_tag():
    buf = EditBuffer()
    buf.add_slot("elective", tag="Major Elective", priority=10)
    buf.add_slot("elective", tag="Major Elective", priority=10)
    buf.add_slot("elective", tag="Non-Major Elective", priority=20)
    snap = buf.add_slot("elective")

    assert [s.title for s in snap.slots] == [
        "Major Elective #1",
        "Major Elective #2",
        "Non-Major Elective #1",
        "Elective #1",
    ]
    assert [s.priority for s in snap.slots] == [10, 10, 20, 50]
    assert len({s.id for s in snap.slots}) == 4


def test_configured_pass_grade_is_used():
    snap = EditBuffer(default_pass_grade="C").add_slot("elective")
    assert snap.slots[0].min_grade == "C"


def test_each_mutation_returns_a_new_snapshot():
    buf = EditBuffer(make_data("A", "B"))
    before = buf.snapshot
    after = buf.update_slot("s-0", title="A1")

    assert after is not before
    assert before.slots[0].title == "A"
    assert after.slots[0].title == "A1"
    assert after.slots[1] is before.slots[1]


def test_update_slot_ignores_unknown_fields_and_id():
    buf = EditBuffer(make_data("A"))
    snap = buf.update_slot("s-0", id="other", bogus=1, course_name="Signals", kind="nonsense")
    assert snap.slots[0].id == "s-0"
    assert snap.slots[0].course_name == "Signals"
    assert snap.slots[0].kind is SlotKind.REQUIRED


def test_update_slot_copies_caller_lists():
    buf = EditBuffer(make_data("A"))
    courses = ["X"]
    buf.update_slot("s-0", allowed_courses=courses)
    courses.append("Y")
    assert buf.snapshot.slots[0].allowed_courses == ["X"]


def test_unknown_ids_are_noops():
    buf = EditBuffer(make_data("A", rules=1))
    before = buf.snapshot
    assert buf.update_slot("missing", title="x") is before
    assert buf.remove_slot("missing") is before
    assert buf.update_rule("missing", name="x") is before
    assert buf.remove_rule("missing") is before
    assert before == make_data("A", rules=1)


def test_remove_slot_and_rule():
    buf = EditBuffer(make_data("A", "B", rules=2))
    buf.remove_slot("s-0")
    snap = buf.remove_rule("r-1")
    assert [s.id for s in snap.slots] == ["s-1"]
    assert [r.id for r in snap.rules] == ["r-0"]


def test_add_and_update_rule():
    buf = EditBuffer()
    snap = buf.add_rule()
    rule = snap.rules[0]
    assert rule.name == ""
    assert rule.when.any_passed == [] and rule.then.add_slots == []

    snap = buf.update_rule(rule.id, name="Calc track", when=RuleCondition(any_passed=["Calculus I"]))
    assert snap.rules[0].name == "Calc track"
    assert snap.rules[0].when.any_passed == ["Calculus I"]


def test_update_rule_accepts_wire_dicts():
    buf = EditBuffer()
    rule_id = buf.add_rule("Calc").rules[0].id

    snap = buf.update_rule(
        rule_id,
        when={"anyPassed": ["Calculus I"]},
        then={"waiveCourses": ["Applied Calculus"], "addSlots": [{"title": "Calculus II"}]},
    )

    rule = snap.rules[0]
    assert isinstance(rule.when, RuleCondition) and isinstance(rule.then, RuleEffect)
    assert rule.when.any_passed == ["Calculus I"]
    assert rule.then.add_slots[0].title == "Calculus II"
    wire = semester_to_json(snap)["rules"][0]
    assert wire["when"] == {"anyPassed": ["Calculus I"]}
    assert wire["then"]["waiveCourses"] == ["Applied Calculus"]


def test_edits_never_reach_the_prefill_source(store):
    source = make_key(program="EE")
    store.save(source, make_data("A", "B", "C", rules=1))
    res = CascadeResolver(store, min_year_group=2025).resolve(make_key(), previous_program="EE")

    buf = EditBuffer(res.data)
    buf.add_slot("elective")
    buf.update_slot("s-1", title="changed")
    buf.remove_slot("s-0")
    buf.update_rule("r-0", name="renamed")

    stored = store.fetch(source)
    assert [s.title for s in stored.slots] == ["A", "B", "C"]
    assert stored.rules[0].name == "rule 0"
    assert [s.title for s in res.data.slots] == ["A", "B", "C"]
