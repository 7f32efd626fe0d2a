import datetime as dt

import pytest

from planboard.derivation import ScheduleStatus, derive_project, derive_task
from planboard.intents import BarMoved, BarResized, ProjectBarMoved, ProjectBarResized
from planboard.models import CheckboxState, MilestoneRecord, ProjectRecord, TaskRecord
from planboard.timeline import (
    DragController,
    FrameThrottle,
    bar_span,
    build_timeline,
    compute_horizon,
    index_to_zoom,
    normalize_zoom,
    round_half_away,
    visible_set,
    zoom_to_index,
)

ANCHOR = dt.date(2024, 1, 1)
OWNER = "projects/alpha.md"


def _task(local_id, start=None, due=None, mark=" ", **props):
    task = TaskRecord(
        local_id=local_id,
        owner_key=OWNER,
        text=local_id.lower(),
        props=dict(props),
        checkbox=CheckboxState.from_marker(mark),
        line=0,
        raw="",
    )
    task.start = dt.date.fromisoformat(start) if start else None
    task.due = dt.date.fromisoformat(due) if due else None
    return derive_task(task)


def _project():
    project = ProjectRecord(
        owner_key=OWNER,
        title="Alpha",
        frontmatter={},
        tasks=[
            _task("E-1", "2024-01-03", "2024-01-06"),
            _task("T-1", "2024-01-05", "2024-01-08"),
            _task("T-2", due="2024-01-10"),
            _task("T-3"),
            _task("T-4", due="2023-12-30"),
            _task("T-5", due="2024-01-03", mark="x"),
            _task("M-1", due="2024-01-12"),
        ],
        start=dt.date(2024, 1, 1),
        end=dt.date(2024, 1, 31),
    )
    return derive_project(project)


def test_bar_span_uses_inclusive_days():
    assert bar_span(dt.date(2024, 1, 5), dt.date(2024, 1, 8), ANCHOR) == (4, 4)
    assert bar_span(None, dt.date(2024, 1, 10), ANCHOR) == (9, 1)
    assert bar_span(dt.date(2024, 1, 9), dt.date(2024, 1, 5), ANCHOR) == (8, 1)
    assert bar_span(dt.date(2024, 1, 9), None, ANCHOR) is None


def test_compute_horizon_covers_a_year_and_later_due_dates():
    assert compute_horizon(ANCHOR) == 366
    assert compute_horizon(ANCHOR, dt.date(2025, 2, 10)) == 425
    assert compute_horizon(dt.date(2023, 3, 15)) == 352
    assert compute_horizon(ANCHOR) >= 30


def test_compute_horizon_prefers_configured_end():
    assert compute_horizon(ANCHOR, dt.date(2025, 6, 1), dt.date(2024, 1, 10)) == 10
    assert compute_horizon(ANCHOR, None, dt.date(2023, 12, 1)) == 366


def test_build_timeline_lays_out_project_and_task_rows():
    layout = build_timeline([_project()], anchor=ANCHOR, px_per_day=4)

    assert layout.horizon == 366
    assert layout.width == 367 * 4
    assert layout.rows[0].kind == "project"
    assert layout.rows[0].key == OWNER
    assert layout.rows[0].percent == 14
    assert {row.key for row in layout.rows[1:]} == {
        f"{OWNER}::{task_id}" for task_id in ("e-1", "t-1", "t-2", "t-3", "t-4", "t-5", "m-1")
    }

    project_bar = layout.bar_for(OWNER)
    assert (project_bar.start_offset, project_bar.span_days) == (0, 31)
    assert layout.bar_for(f"{OWNER}::t-3") is None

    bar = layout.bar_for(f"{OWNER}::t-1")
    row = next(row for row in layout.rows if row.key == bar.key)
    assert (bar.start_offset, bar.span_days) == (4, 4)
    assert (bar.rect.x, bar.rect.width, bar.rect.height) == (16, 16, 14)
    assert bar.rect.y == row.top + 5
    assert layout.project_status[OWNER] is ScheduleStatus.ON_TRACK


def test_rows_are_stacked_without_gaps():
    layout = build_timeline([_project()], anchor=ANCHOR, px_per_day=4)

    assert layout.rows[0].top == 0
    assert layout.rows[1].top == 28
    for previous, current in zip(layout.rows[1:], layout.rows[2:]):
        assert current.top == previous.top + 24


def test_urgency_marks_overdue_and_warning_bars():
    layout = build_timeline([_project()], anchor=ANCHOR, px_per_day=4)

    urgency = {key.split("::")[1]: bar.urgency for key, bar in layout.bars.items() if "::" in key}
    assert urgency["t-1"] == "warning"
    assert urgency["t-4"] == "overdue"
    assert urgency["t-5"] is None
    assert urgency["m-1"] is None


def test_heat_map_skips_weekends_and_epics():
    layout = build_timeline([_project()], anchor=ANCHOR, px_per_day=4)
    counts = {day.offset: day.count for day in layout.heat}

    assert len(layout.heat) == layout.horizon + 1
    assert counts[2] == 1
    assert counts[3] == 0
    assert counts[4] == 1
    assert counts[5] == 0 and counts[6] == 0
    assert layout.heat[5].weekend is True
    assert counts[7] == 1
    assert counts[9] == 1
    assert counts[11] == 1


def test_milestone_tasks_and_records_become_markers():
    milestone = MilestoneRecord(
        milestone_id="M-9",
        title="Beta release",
        date=dt.date(2024, 1, 20),
        owner_key="milestones.md",
        document=OWNER,
    )
    layout = build_timeline(
        [_project()],
        anchor=ANCHOR,
        px_per_day=4,
        milestones_for=lambda key: [milestone] if key == OWNER else [],
    )

    assert [(marker.label, marker.offset) for marker in layout.milestones] == [
        ("M-1", 11),
        ("Beta release", 19),
    ]


def test_task_filter_hides_rows():
    layout = build_timeline(
        [_project()],
        anchor=ANCHOR,
        task_filter=lambda task: not task.is_done(),
    )

    assert f"{OWNER}::t-5" not in {row.key for row in layout.rows}
    assert layout.bar_for(f"{OWNER}::t-5") is None


def test_unsupported_zoom_falls_back_to_default():
    layout = build_timeline([_project()], anchor=ANCHOR, px_per_day=13)

    assert layout.px_per_day == 4
    assert layout.to_dict()["zoomIndex"] == 1


def test_visible_set_applies_predicate():
    assert visible_set([1, 2, 3]) == [1, 2, 3]
    assert visible_set([1, 2, 3], lambda value: value > 1) == [2, 3]


@pytest.mark.parametrize(
    ("value", "expected"),
    [(0.5, 1), (-0.5, -1), (2.5, 3), (1.49, 1), (-1.5, -2), (0.0, 0)],
)
def test_round_half_away(value, expected):
    assert round_half_away(value) == expected


def test_zoom_helpers_clamp_to_stops():
    assert normalize_zoom(7) == 7
    assert normalize_zoom(13) == 4
    assert normalize_zoom(True) == 4
    assert normalize_zoom(8.0) == 8
    assert normalize_zoom(8.5) == 4
    assert zoom_to_index(2) == 0
    assert zoom_to_index(50) == 9
    assert zoom_to_index(6.4) == 3
    assert index_to_zoom(-1) == 3
    assert index_to_zoom(99) == 12


def _bar(key="projects/alpha.md::t-1"):
    layout = build_timeline([_project()], anchor=ANCHOR, px_per_day=4)
    return layout.bar_for(key)


def test_drag_move_previews_and_emits_on_release():
    controller = DragController(4)
    bar = _bar()

    controller.begin_move(bar, 20)
    preview = controller.pointer_move(22)

    assert (preview.start_offset, preview.span_days) == (5, 4)
    assert preview.x == 20
    assert controller.active is True
    assert controller.release(24) == BarMoved(task_key=bar.key, delta_days=1)
    assert controller.active is False
    assert controller.release(40) is None


def test_drag_without_whole_day_delta_emits_nothing():
    controller = DragController(4)
    controller.begin_move(_bar(), 20)

    assert controller.release(21) is None


def test_drag_resize_modes():
    bar = _bar()
    controller = DragController(4)

    controller.begin_resize_left(bar, 16)
    assert controller.pointer_move(8).start_offset == 2
    assert controller.release(8) == BarResized(task_key=bar.key, delta_start=-2, delta_due=0)

    controller.begin_resize_right(bar, 32)
    assert controller.pointer_move(40).span_days == 6
    assert controller.release(40) == BarResized(task_key=bar.key, delta_start=0, delta_due=2)


def test_resize_preview_keeps_at_least_one_day():
    controller = DragController(4)
    controller.begin_resize_left(_bar(), 16)

    preview = controller.pointer_move(36)

    assert (preview.start_offset, preview.span_days) == (4, 4)


def test_project_drag_modes():
    bar = _bar(OWNER)
    controller = DragController(4)

    controller.begin_project_move(bar, 0)
    assert controller.release(-8) == ProjectBarMoved(project_key=OWNER, delta_days=-2)

    controller.begin_project_resize_left(bar, 0)
    assert controller.release(4) == ProjectBarResized(
        project_key=OWNER, delta_start=1, delta_end=0
    )

    controller.begin_project_resize_right(bar, 124)
    assert controller.release(136) == ProjectBarResized(
        project_key=OWNER, delta_start=0, delta_end=3
    )


def test_cancel_discards_gesture():
    controller = DragController(4)
    controller.begin_move(_bar(), 20)
    controller.cancel()

    assert controller.pointer_move(40) is None
    assert controller.release(40) is None


def test_frame_throttle_runs_once_with_latest_value():
    calls = []
    throttle = FrameThrottle(lambda value: calls.append(value) or value * 2)

    assert throttle.flush() is None
    for value in (3, 5, 7):
        throttle.request(value)

    assert throttle.pending is True
    assert throttle.flush() == 14
    assert throttle.flush() is None
    assert calls == [7]
