import pytest

from factories import make_data, make_key
from program_criteria.core.engine import EMPTY_MESSAGE, CascadeResolver
from program_criteria.core.errors import StoreAuthError, StoreUnavailableError
from program_criteria.core.models import ResolutionSource, Semester
from program_criteria.core.repositories import InMemoryCriteriaStore
from program_criteria.core.strategies import PreviousSemesterStep, SiblingProgramStep


class FlakyStore(InMemoryCriteriaStore):
    def __init__(self, failing, error):
        super().__init__()
        self.failing = set(failing)
        self.error = error

    def fetch(self, key):
        if key in self.failing:
            self.fetch_log.append(key)
            raise self.error
        return super().fetch(key)


def _resolver(store):
    return CascadeResolver(store, min_year_group=2025)


def test_saved_data_wins_without_fallback_lookups(store):
    target = make_key()
    store.save(target, make_data("Circuits", "Signals", rules=1))
    store.save(make_key(program="EE"), make_data("Other"))

    res = _resolver(store).resolve(target, previous_program="EE")

    assert store.fetch_log == [target]
    assert res.source is ResolutionSource.SAVED
    assert res.message == ""
    assert res.data == store.fetch(target)


def test_sibling_program_example(store):
    source = make_key(program="EE")
    store.save(source, make_data("A", "B", "C"))

    res = _resolver(store).resolve(make_key(), previous_program="EE")

    assert res.source is ResolutionSource.SIBLING_PROGRAM
    assert res.source_key == source
    assert [s.title for s in res.data.slots] == ["A", "B", "C"]
    assert '"EE"' in res.message and "Y2S1" in res.message
    assert "Save" in res.message
    assert res.is_prefill


def test_prefill_is_a_structural_copy(store):
    source = make_key(program="EE")
    store.save(source, make_data("A", rules=1))

    res = _resolver(store).resolve(make_key(), previous_program="EE")
    res.data.slots[0].title = "edited"
    res.data.rules[0].when.any_passed.append("Physics")
    res.data.rules[0].then.add_slots[0].title = "edited too"

    again = store.fetch(source)
    assert again.slots[0].title == "A"
    assert again.rules[0].when.any_passed == ["Calculus I"]
    assert again.rules[0].then.add_slots[0].title == "Calculus II"


def test_sibling_step_precedes_previous_semester(store):
    store.save(make_key(program="EE"), make_data("from EE"))
    store.save(make_key(semester=Semester.Y1S2), make_data("from Y1S2"))

    res = _resolver(store).resolve(make_key(), previous_program="EE")

    assert res.source is ResolutionSource.SIBLING_PROGRAM
    assert res.data.slots[0].title == "from EE"


@pytest.mark.parametrize("hint", [None, "", "  ", "CS"])
def test_sibling_step_needs_a_different_program(store, hint):
    _resolver(store).resolve(make_key(), previous_program=hint)
    assert all(k.program == "CS" for k in store.fetch_log)


def test_previous_semester_lookup_queries_preceding_code(store):
    store.save(make_key(semester=Semester.Y1S2), make_data("carried"))

    res = _resolver(store).resolve(make_key(semester=Semester.Y2S1))

    assert res.source is ResolutionSource.PREVIOUS_SEMESTER
    assert store.fetch_log == [make_key(semester=Semester.Y2S1), make_key(semester=Semester.Y1S2)]
    assert res.message.startswith("Prefilled from Y1S2.")


def test_first_semester_skips_to_year_group_fallback(store):
    store.save(make_key(year_group=2025, semester=Semester.Y1S1), make_data("last cohort"))

    res = _resolver(store).resolve(make_key(year_group=2026, semester=Semester.Y1S1))

    assert res.source is ResolutionSource.PREVIOUS_YEAR_GROUP
    assert store.fetch_log == [
        make_key(year_group=2026, semester=Semester.Y1S1),
        make_key(year_group=2025, semester=Semester.Y1S1),
    ]
    assert "YearGroup 2025, Y1S1" in res.message


def test_year_group_floor_is_respected(store):
    _resolver(store).resolve(make_key(year_group=2025, semester=Semester.Y1S1))
    assert store.fetch_log == [make_key(year_group=2025, semester=Semester.Y1S1)]


def test_all_empty_gives_fresh_data(store):
    res = _resolver(store).resolve(make_key(), previous_program="EE")

    assert res.source is ResolutionSource.EMPTY
    assert res.data.slots == [] and res.data.rules == []
    assert res.message == EMPTY_MESSAGE
    assert store.fetch_log == [
        make_key(),
        make_key(program="EE"),
        make_key(semester=Semester.Y1S2),
        make_key(year_group=2025),
    ]


def test_rules_alone_count_as_content(store):
    store.save(make_key(semester=Semester.Y1S2), make_data(rules=1))
    res = _resolver(store).resolve(make_key())
    assert res.source is ResolutionSource.PREVIOUS_SEMESTER
    assert len(res.data.rules) == 1


def test_store_error_aborts_cascade():
    store = FlakyStore([make_key(program="EE")], StoreUnavailableError())
    store.save(make_key(semester=Semester.Y1S2), make_data("never reached"))

    with pytest.raises(StoreUnavailableError):
        _resolver(store).resolve(make_key(), previous_program="EE")
    assert store.fetch_log == [make_key(), make_key(program="EE")]


def test_auth_error_on_target_is_not_empty():
    store = FlakyStore([make_key()], StoreAuthError())
    with pytest.raises(StoreAuthError):
        _resolver(store).resolve(make_key())


def test_blank_program_is_rejected(store):
    with pytest.raises(ValueError):
        _resolver(store).resolve(make_key(program="   "))
    assert store.fetch_log == []


def test_program_is_stripped(store):
    store.save(make_key(), make_data("A"))
    res = _resolver(store).resolve(make_key(program=" CS "))
    assert res.key == make_key()
    assert res.source is ResolutionSource.SAVED


def test_custom_step_order(store):
    store.save(make_key(program="EE"), make_data("from EE"))
    store.save(make_key(semester=Semester.Y1S2), make_data("from Y1S2"))

    resolver = CascadeResolver(store, steps=[PreviousSemesterStep(), SiblingProgramStep()])
    res = resolver.resolve(make_key(), previous_program="EE")

    assert res.source is ResolutionSource.PREVIOUS_SEMESTER
