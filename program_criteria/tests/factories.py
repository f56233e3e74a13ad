from program_criteria.core.models import Semester, SemesterKey
from program_criteria.core.schema import semester_from_json


def make_key(year_group=2026, program="CS", semester=Semester.Y2S1):
    return SemesterKey(year_group, program, Semester(semester))


def make_data(*titles, rules=0):
    return semester_from_json({
        "slots": [
            {"id": f"s-{i}", "title": t, "kind": "required", "courseName": t}
            for i, t in enumerate(titles)
        ],
        "rules": [
            {
                "id": f"r-{i}",
                "name": f"rule {i}",
                "when": {"anyPassed": ["Calculus I"]},
                "then": {"waiveSlotsByTitle": ["Applied Calculus"],
                         "addSlots": [{"id": f"add-{i}", "title": "Calculus II", "kind": "required"}]},
            }
            for i in range(rules)
        ],
    })
