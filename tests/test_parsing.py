import datetime as dt

import pytest

from planboard.models import CheckboxState, LinkType
from planboard.parsing import (
    is_table_separator,
    normalize_frontmatter_key,
    parse_depends,
    parse_document,
    parse_frontmatter,
    parse_inline_props,
    parse_iso_date,
    split_frontmatter,
    strip_inline_props,
    strip_link_type,
)

PROJECT_DOC = "\n".join(
    [
        "---",
        "project: true",
        "Start Date: 2024-01-01",
        "End: 2024-03-31",
        "---",
        "# Alpha",
        "",
        "- [ ] Write brief start:: 2024-01-02 due:: 2024-01-05 priority:: high ^T-1",
        "- [x] Ship it due::\u00a02024-02-01 ^T-2",
        "  - [/] Pair on it id:: T-3",
        "1. [-] Paused work ^T-4",
        "- plain bullet",
        "- [ ] No id here due:: 2024-01-01",
        "- [ ] Bad date due:: 2024-13-45 ^T-9",
        "- [ ] Loose date due:: Jan 5 ^T-8",
        "",
        "| ID | Task | Epic | Priority | Start | Due |",
        "| --- | --- | --- | --- | --- | --- |",
        "| S-1 | [ ] Draft outline | E-1 | High | 2024-01-08 | 2024-01-12 |",
        "| S-2 | [x] Review depends:: SS:S-1 | E-1 | | | 2024-01-20 |",
        "",
        "| ID | Milestone | Date | Description |",
        "| :--- | :---: | --- | --- |",
        "| M-1 | Beta | 2024-02-15 | First external build |",
        "| M-2 | Launch | someday | |",
        "",
    ]
)


def _tasks_by_id(parsed):
    return {task.local_id: task for task in parsed.tasks}


def test_parse_document_reads_front_matter():
    parsed = parse_document("projects/alpha.md", PROJECT_DOC)

    assert parsed.is_project is True
    assert parsed.title == "alpha"
    assert parsed.start == dt.date(2024, 1, 1)
    assert parsed.end == dt.date(2024, 3, 31)


def test_parse_document_extracts_list_tasks():
    tasks = _tasks_by_id(parse_document("projects/alpha.md", PROJECT_DOC))

    brief = tasks["T-1"]
    assert brief.key == "projects/alpha.md::t-1"
    assert brief.text == "Write brief"
    assert brief.start == dt.date(2024, 1, 2)
    assert brief.due == dt.date(2024, 1, 5)
    assert brief.props["priority"] == "high"
    assert brief.checkbox is CheckboxState.UNCHECKED
    assert brief.line == 7

    assert tasks["T-2"].due == dt.date(2024, 2, 1)
    assert tasks["T-2"].checkbox is CheckboxState.DONE
    assert tasks["T-3"].checkbox is CheckboxState.IN_PROGRESS
    assert tasks["T-3"].text == "Pair on it"
    assert tasks["T-4"].checkbox is CheckboxState.ON_HOLD


def test_parse_document_omits_tasks_without_id_or_with_bad_dates():
    tasks = _tasks_by_id(parse_document("projects/alpha.md", PROJECT_DOC))

    assert "T-8" not in tasks
    assert "T-9" not in tasks
    assert all("No id here" not in task.text for task in tasks.values())


def test_parse_document_extracts_table_tasks_with_header_properties():
    tasks = _tasks_by_id(parse_document("projects/alpha.md", PROJECT_DOC))

    outline = tasks["S-1"]
    assert outline.text == "Draft outline"
    assert outline.props["epic"] == "E-1"
    assert outline.props["priority"] == "High"
    assert outline.start == dt.date(2024, 1, 8)
    assert outline.due == dt.date(2024, 1, 12)

    review = tasks["S-2"]
    assert review.checkbox is CheckboxState.DONE
    assert review.start is None
    assert review.depends == ["S-1"]


def test_parse_document_extracts_milestones():
    parsed = parse_document("projects/alpha.md", PROJECT_DOC)

    assert [milestone.milestone_id for milestone in parsed.milestones] == ["M-1"]
    beta = parsed.milestones[0]
    assert beta.title == "Beta"
    assert beta.date == dt.date(2024, 2, 15)
    assert beta.description == "First external build"
    assert beta.belongs_to == "projects/alpha.md"


def test_milestone_file_column_names_the_owner():
    text = "\n".join(
        [
            "| ID | Title | Date | File |",
            "| --- | --- | --- | --- |",
            "| M-1 | Kickoff | 2024-01-03 | beta |",
        ]
    )

    parsed = parse_document("milestones.md", text)

    assert parsed.milestones[0].belongs_to == "beta"


def test_parse_document_with_invalid_front_matter_is_not_a_project():
    text = "---\nproject: [unclosed\n---\n- [ ] Task ^T-1\n"

    parsed = parse_document("broken.md", text)

    assert parsed.frontmatter == {}
    assert parsed.is_project is False
    assert [task.local_id for task in parsed.tasks] == ["T-1"]


def test_parse_document_honours_custom_project_flag():
    text = "---\nkanban: yes\n---\n"

    assert parse_document("board.md", text, project_flag="kanban").is_project is True
    assert parse_document("board.md", text).is_project is False


def test_parse_document_ignores_unparsable_project_dates():
    text = "---\nproject: true\nStart: soon\nEnd: 2024-05-01\n---\n"

    parsed = parse_document("p.md", text)

    assert parsed.start is None
    assert parsed.end == dt.date(2024, 5, 1)


def test_split_frontmatter_reports_body_start():
    block, body_start = split_frontmatter("---\na: 1\n---\nbody\n")

    assert block == "a: 1"
    assert body_start == 3
    assert split_frontmatter("no front matter") == (None, 0)


def test_parse_frontmatter_requires_mapping():
    assert parse_frontmatter("---\n- a\n- b\n---\n") == {}
    assert parse_frontmatter("---\nProject: true\n---\n") == {"Project": True}


def test_parse_inline_props_first_occurrence_wins():
    props = parse_inline_props(" status:: done Status:: open [priority:: low]")

    assert props == {"status": "done", "priority": "low"}


def test_parse_inline_props_folds_nbsp_in_keys():
    props = parse_inline_props(" due\u00a0:: 2024-01-01 percent\u00a0complete:: 40%")

    assert props == {"due": "2024-01-01", "percent complete": "40%"}


def test_strip_inline_props_keeps_leading_text():
    assert strip_inline_props("  Write   brief due:: 2024-01-01 ^T-1") == "Write brief"
    assert strip_inline_props(" Just text ^T-1") == "Just text"


def test_parse_depends_reads_link_types():
    assert parse_depends("FF:T-1, sf: ^T-2, T-3") == [
        (LinkType.FINISH_FINISH, "T-1"),
        (LinkType.START_FINISH, "T-2"),
        (LinkType.FINISH_START, "T-3"),
    ]
    assert parse_depends(None) == []
    assert parse_depends(" , ") == []


def test_strip_link_type_lowers_reference():
    assert strip_link_type("SS:^S-1") == "s-1"
    assert strip_link_type("") == ""


@pytest.mark.parametrize("raw", ["2024-02-30", "2024-2-3", "Jan 5", "", None, 20240101])
def test_parse_iso_date_is_strict(raw):
    with pytest.raises(ValueError):
        parse_iso_date(raw)


def test_parse_iso_date_accepts_dates_and_quotes():
    assert parse_iso_date("'2024-01-02'") == dt.date(2024, 1, 2)
    assert parse_iso_date(dt.date(2024, 1, 2)) == dt.date(2024, 1, 2)
    assert parse_iso_date(dt.datetime(2024, 1, 2, 9, 30)) == dt.date(2024, 1, 2)


def test_normalize_frontmatter_key():
    assert normalize_frontmatter_key("Start_Date ") == "startdate"
    assert normalize_frontmatter_key("End Date") == "enddate"


def test_is_table_separator():
    assert is_table_separator("| --- | :---: |")
    assert is_table_separator("|---|---|")
    assert not is_table_separator("| a | b |")
