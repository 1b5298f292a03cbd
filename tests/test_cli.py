"""
Tests for CLI commands — list, run, run-order, run-graph, create, trigger.
"""

import json
import sys
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from terrastack.main import cli


@pytest.fixture(autouse=True)
def _no_automation(monkeypatch):
    monkeypatch.delenv("CI", raising=False)
    monkeypatch.delenv("TERRASTACK_AUTOMATION", raising=False)


@pytest.fixture
def stacks_project(project: Path, write_stack) -> Path:
    write_stack(project, "/net", "tags: [prod, network]\n")
    write_stack(project, "/app", "tags: [prod]\nafter: [/net]\n")
    write_stack(project, "/dev", "tags: [dev]\n")
    return project


def _invoke(root: Path, *args: str):
    runner = CliRunner()
    return runner.invoke(cli, ["-C", str(root), *args])


class TestCLIGlobal:
    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "orchestrate commands across infrastructure stacks" in result.output
        for command in ("list", "run", "run-order", "run-graph", "create", "trigger"):
            assert command in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_missing_chdir(self, tmp_path: Path):
        result = CliRunner().invoke(cli, ["-C", str(tmp_path / "nope"), "list"])
        assert result.exit_code == 2


class TestListCommand:
    def test_lists_sorted(self, stacks_project: Path):
        result = _invoke(stacks_project, "list")
        assert result.exit_code == 0
        assert result.stdout.splitlines() == ["app", "dev", "net"]

    def test_relative_to_working_dir(self, stacks_project: Path, write_stack):
        write_stack(stacks_project, "/net/vpc")
        result = _invoke(stacks_project / "net", "list")
        assert result.exit_code == 0
        assert result.stdout.splitlines() == [".", "vpc"]

    def test_tags(self, stacks_project: Path):
        result = _invoke(stacks_project, "list", "--tags", "prod", "--no-tags", "network")
        assert result.stdout.splitlines() == ["app"]

    def test_tags_or(self, stacks_project: Path):
        result = _invoke(stacks_project, "list", "--tags", "dev", "--tags", "network")
        assert result.stdout.splitlines() == ["dev", "net"]

    def test_invalid_tag(self, stacks_project: Path):
        result = _invoke(stacks_project, "list", "--tags", "Bad Tag")
        assert result.exit_code == 1
        assert "invalid tag" in result.output

    def test_run_order(self, stacks_project: Path):
        result = _invoke(stacks_project, "list", "--run-order")
        assert result.stdout.splitlines() == ["net", "app", "dev"]

    def test_why_requires_changed(self, stacks_project: Path):
        result = _invoke(stacks_project, "list", "--why")
        assert result.exit_code == 2
        assert "--why requires --changed" in result.output

    def test_changed_outside_repository(self, stacks_project: Path, monkeypatch):
        monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(stacks_project.parent))
        result = _invoke(stacks_project, "list", "--changed")
        assert result.exit_code == 1
        assert "not a git repository" in result.output

    def test_json(self, stacks_project: Path):
        result = _invoke(stacks_project, "list", "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [s["path"] for s in data["stacks"]] == ["/app", "/dev", "/net"]
        assert data["stacks"][2]["tags"] == ["prod", "network"]
        assert data["working_dir"] == "/"

    def test_invalid_stack_file(self, stacks_project: Path, write_stack):
        write_stack(stacks_project, "/broken", "colour: blue\n")
        result = _invoke(stacks_project, "list")
        assert result.exit_code == 1
        assert "broken" in result.output


class TestRunOrderCommand:
    def test_order(self, stacks_project: Path):
        result = _invoke(stacks_project, "run-order")
        assert result.exit_code == 0
        assert result.stdout.splitlines() == ["/net", "/app", "/dev"]

    def test_reverse(self, stacks_project: Path):
        result = _invoke(stacks_project, "run-order", "--reverse")
        assert result.stdout.splitlines() == ["/dev", "/app", "/net"]

    def test_json(self, stacks_project: Path):
        result = _invoke(stacks_project, "run-order", "--json")
        assert json.loads(result.stdout) == {"order": ["/net", "/app", "/dev"]}

    def test_cycle_fails(self, project: Path, write_stack):
        write_stack(project, "/x", "after: [/y]\n")
        write_stack(project, "/y", "after: [/x]\n")
        result = _invoke(project, "run-order")
        assert result.exit_code == 1
        assert "cycle detected" in result.output

    def test_cycle_json(self, project: Path, write_stack):
        write_stack(project, "/x", "after: [/y]\n")
        write_stack(project, "/y", "after: [/x]\n")
        result = _invoke(project, "run-order", "--json")
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["cycle"] == ["/x", "/y", "/x"]

    def test_circular_wants_from_stack_dir(self, project: Path, write_stack):
        write_stack(project, "/a", "wants: [/b]\n")
        write_stack(project, "/b", "wants: [/c]\n")
        write_stack(project, "/c", "wants: [/a]\n")
        result = _invoke(project / "a", "run-order")
        assert result.exit_code == 0
        assert result.stdout.splitlines() == ["/c", "/b", "/a"]


class TestRunGraphCommand:
    def test_dot(self, stacks_project: Path):
        result = _invoke(stacks_project, "run-graph")
        assert result.exit_code == 0
        lines = result.stdout.splitlines()
        assert lines[0] == "digraph {"
        assert '  n1 [label="app"];' in lines
        assert "  n1 -> n3;" in lines
        assert lines[-1] == "}"

    def test_label_dir(self, stacks_project: Path):
        result = _invoke(stacks_project, "run-graph", "--label", "stack.dir")
        assert '  n3 [label="/net"];' in result.stdout.splitlines()

    def test_cycle_is_drawn_not_fatal(self, project: Path, write_stack):
        write_stack(project, "/x", "after: [/y]\n")
        write_stack(project, "/y", "after: [/x]\n")
        result = _invoke(project, "run-graph")
        assert result.exit_code == 0
        assert 'color="red"' in result.stdout
        assert "cycle detected" in result.stderr

    def test_output_file(self, stacks_project: Path, tmp_path: Path):
        out = tmp_path / "graph.dot"
        result = _invoke(stacks_project, "run-graph", "-o", str(out))
        assert result.exit_code == 0
        assert out.read_text().startswith("digraph {")


class TestRunCommand:
    def test_dry_run(self, stacks_project: Path):
        result = _invoke(stacks_project, "run", "--dry-run", "--", "terraform", "plan")
        assert result.exit_code == 0
        assert "[dry-run]" in result.stderr
        assert not (stacks_project / "net" / ".terraform").exists()

    def test_dry_run_json_keeps_command_args(self, stacks_project: Path):
        result = _invoke(stacks_project, "run", "--dry-run", "--json", "terraform", "plan", "-no-color")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["order"] == ["/net", "/app", "/dev"]
        assert data["report"]["command"] == ["terraform", "plan", "-no-color"]
        assert data["report"]["skipped"] == 3

    def test_runs_command_in_each_stack(self, stacks_project: Path):
        code = "open('ran.txt', 'w').write('ok')"
        result = _invoke(stacks_project, "run", "--", sys.executable, "-c", code)
        assert result.exit_code == 0
        for name in ("net", "app", "dev"):
            assert (stacks_project / name / "ran.txt").read_text() == "ok"

    def test_failure_exits_nonzero(self, stacks_project: Path):
        result = _invoke(stacks_project, "run", "--", sys.executable, "-c", "import sys; sys.exit(4)")
        assert result.exit_code == 1
        assert "0/3 succeeded" in result.stderr

    def test_tags_select_stacks(self, stacks_project: Path):
        code = "open('ran.txt', 'w').write('ok')"
        result = _invoke(stacks_project, "run", "--tags", "dev", "--", sys.executable, "-c", code)
        assert result.exit_code == 0
        assert (stacks_project / "dev" / "ran.txt").exists()
        assert not (stacks_project / "net" / "ran.txt").exists()

    def test_no_recursive(self, stacks_project: Path, write_stack):
        write_stack(stacks_project, "/net/vpc")
        result = _invoke(stacks_project / "net", "run", "--no-recursive", "--dry-run", "--json", "make")
        assert json.loads(result.stdout)["order"] == ["/net"]

    def test_require_ids(self, stacks_project: Path):
        result = _invoke(stacks_project, "run", "--require-ids", "--dry-run", "make")
        assert result.exit_code == 1
        assert "missing" in result.output

    def test_automation_drops_stacks_without_id(self, stacks_project: Path, write_stack):
        write_stack(stacks_project, "/net", "id: net\ntags: [prod, network]\n")
        result = _invoke(stacks_project, "run", "--dry-run", "--json", "make")
        assert json.loads(result.stdout)["order"] == ["/net", "/app", "/dev"]

        result = CliRunner().invoke(
            cli, ["-C", str(stacks_project), "--automation", "run", "--dry-run", "--json", "make"]
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout)["order"] == ["/net"]

    def test_requires_command(self, stacks_project: Path):
        result = _invoke(stacks_project, "run")
        assert result.exit_code == 2

    def test_changed_outside_repository(self, stacks_project: Path, monkeypatch):
        monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(stacks_project.parent))
        result = _invoke(stacks_project, "run", "--changed", "--dry-run", "make")
        assert result.exit_code == 1
        assert "not a git repository" in result.output

    def test_missing_report_fails_cleanly(self, stacks_project: Path, monkeypatch):
        from terrastack.core.use_cases import run as run_module

        monkeypatch.setattr(run_module, "run_command", lambda *args, **kwargs: run_module.RunResult())
        result = _invoke(stacks_project, "run", "make")
        assert result.exit_code == 1
        assert "run produced no report" in result.output


class TestCreateCommand:
    def test_create(self, project: Path):
        result = _invoke(project, "create", "stacks/vpc", "--tags", "network", "--after", "/stacks/base")
        assert result.exit_code == 0
        assert "Created stack /stacks/vpc" in result.output

        data = yaml.safe_load((project / "stacks" / "vpc" / "stack.yml").read_text())
        assert data["name"] == "vpc"
        assert data["tags"] == ["network"]
        assert data["after"] == ["/stacks/base"]
        assert len(data["id"]) == 36

    def test_created_stack_is_listed(self, project: Path):
        _invoke(project, "create", "vpc", "--id", "vpc")
        result = _invoke(project, "list", "--json")
        assert json.loads(result.stdout)["stacks"][0]["id"] == "vpc"

    def test_existing(self, project: Path, write_stack):
        write_stack(project, "/vpc")
        result = _invoke(project, "create", "vpc")
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_ignore_existing(self, project: Path, write_stack):
        write_stack(project, "/vpc", "name: kept\n")
        result = _invoke(project, "create", "vpc", "--ignore-existing")
        assert result.exit_code == 0
        assert "already exists" in result.output
        assert "kept" in (project / "vpc" / "stack.yml").read_text()

    def test_duplicate_id(self, project: Path, write_stack):
        write_stack(project, "/a", "id: shared\n")
        result = _invoke(project, "create", "b", "--id", "shared")
        assert result.exit_code == 1
        assert "already used by /a" in result.output
        assert not (project / "b" / "stack.yml").exists()

    def test_invalid_tag(self, project: Path):
        result = _invoke(project, "create", "b", "--tags", "NotValid")
        assert result.exit_code == 1
        assert not (project / "b" / "stack.yml").exists()


class TestTriggerCommand:
    def test_trigger(self, stacks_project: Path):
        result = _invoke(stacks_project, "trigger", "app", "--reason", "rotate")
        assert result.exit_code == 0
        assert "Triggered stack /app" in result.output

        files = list((stacks_project / ".terrastack" / "triggers" / "app").glob("*.yml"))
        assert len(files) == 1
        assert yaml.safe_load(files[0].read_text())["reason"] == "rotate"

    def test_trigger_not_a_stack(self, stacks_project: Path):
        (stacks_project / "docs").mkdir()
        result = _invoke(stacks_project, "trigger", "docs")
        assert result.exit_code == 1
        assert "not a stack" in result.output
