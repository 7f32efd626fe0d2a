import json

from planboard import cli

PROJECT = "---\nproject: yes\n---\n- [ ] Plan due:: 2024-01-05 ^T-1\n"


def test_reindex_prints_summary(tmp_path, monkeypatch, capsys):
    (tmp_path / "plan.md").write_text(PROJECT, encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PLANBOARD_LIBRARY_PATH", str(tmp_path))
    monkeypatch.delenv("PLANBOARD_PROJECT_FLAG", raising=False)
    monkeypatch.delenv("PLANBOARD_LOG_DIR", raising=False)
    monkeypatch.delenv("PLANBOARD_LOG_LEVEL", raising=False)

    assert cli.main(["reindex"]) == 0

    summary = json.loads(capsys.readouterr().out)
    assert summary["reindex"]["projects"] == 1
    assert summary["reindex"]["tasks"] == 1
    assert [project["path"] for project in summary["projects"]] == ["plan.md"]


def test_missing_library_reports_configuration_error(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PLANBOARD_LIBRARY_PATH", raising=False)

    assert cli.main(["reindex"]) == 2
    assert "PLANBOARD_LIBRARY_PATH" in capsys.readouterr().err


def test_serve_runs_uvicorn_factory(tmp_path, monkeypatch):
    calls = []
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PLANBOARD_LIBRARY_PATH", str(tmp_path))
    monkeypatch.setattr(cli, "_serve", lambda host, port: calls.append((host, port)))

    assert cli.main(["serve", "--port", "9000"]) == 0
    assert calls == [("127.0.0.1", 9000)]
