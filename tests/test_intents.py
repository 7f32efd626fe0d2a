import pytest

from planboard.errors import PlanboardError
from planboard.intents import (
    BarMoved,
    BarResized,
    ProjectBarResized,
    intent_from_dict,
    intent_to_dict,
)


def test_intent_to_dict_uses_wire_names():
    intent = BarResized(task_key="projects/alpha.md::t-1", delta_start=0, delta_due=3)

    assert intent_to_dict(intent) == {
        "type": "bar-resized",
        "taskKey": "projects/alpha.md::t-1",
        "deltaStart": 0,
        "deltaDue": 3,
    }


def test_intent_from_dict_builds_each_kind():
    assert intent_from_dict(
        {"type": "bar-moved", "taskKey": "p.md::t-1", "deltaDays": -2}
    ) == BarMoved(task_key="p.md::t-1", delta_days=-2)
    assert intent_from_dict(
        {"type": "project-bar-resized", "projectKey": "p.md", "deltaStart": 1, "deltaEnd": 0}
    ) == ProjectBarResized(project_key="p.md", delta_start=1, delta_end=0)


@pytest.mark.parametrize(
    ("data", "code"),
    [
        ("bar-moved", "INVALID_TYPE"),
        ({"type": "bar-teleported"}, "INVALID_INTENT"),
        ({"type": 3}, "INVALID_INTENT"),
        ({"type": "bar-moved", "taskKey": "p.md::t-1"}, "MISSING_FIELDS"),
        ({"type": "bar-moved", "taskKey": "p.md::t-1", "deltaDays": "2"}, "INVALID_TYPE"),
        ({"type": "bar-moved", "taskKey": "p.md::t-1", "deltaDays": True}, "INVALID_TYPE"),
        ({"type": "bar-moved", "taskKey": " ", "deltaDays": 1}, "INVALID_TYPE"),
    ],
)
def test_intent_from_dict_rejects_bad_input(data, code):
    with pytest.raises(PlanboardError) as excinfo:
        intent_from_dict(data)

    assert excinfo.value.error.code == code
