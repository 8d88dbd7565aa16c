"""Tests for the template-sync command line.

Covers:
- plan / apply / diff / merge-manifest / init-config commands
- --json output and --resolve / --field flags
- Exit codes for missing arguments, bad flags and fatal store errors
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from template_sync import __version__
from template_sync.cli import main
from template_sync.config_loader import CONFIG_ENV_VAR


@pytest.fixture
def cli(tmp_path, monkeypatch):
    """Run ``main()`` from an empty working directory with logging stubbed."""
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)

    with patch("template_sync.cli.setup_logging") as mock_logging:
        def _run(*argv: str) -> int:
            return main(list(argv))

        _run.setup_logging = mock_logging
        _run.cwd = work.resolve()
        yield _run


@pytest.fixture
def synced(make_project, write_tree):
    """Template and project trees sharing ``src`` with one file each."""
    template, project = make_project(["src"])
    write_tree(template, {"src/a.ts": "one\ntwo\n"})
    write_tree(project, {"src/a.ts": "one\n"})
    return template, project


def _args(template, project, *rest):
    return ("--template", str(template), "--project", str(project), *rest)


class TestPlan:
    """Tests for the plan command."""

    def test_text_output(self, cli, synced, capsys):
        template, project = synced
        assert cli(*_args(template, project, "plan")) == 0
        out = capsys.readouterr().out
        assert "Copy from template (1):" in out
        assert "src/a.ts" in out
        assert (project / "src/a.ts").read_text() == "one\n"

    def test_json_output(self, cli, synced, capsys):
        template, project = synced
        assert cli(*_args(template, project, "--json", "plan")) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["counts"]["copy"] == 1
        assert data["decisions"][0]["path"] == "src/a.ts"

    def test_logging_configured_for_cli(self, cli, synced):
        template, project = synced
        cli(*_args(template, project, "--debug", "plan"))
        kwargs = cli.setup_logging.call_args.kwargs
        assert kwargs["mode"] == "cli"
        assert kwargs["debug"] is True

    def test_missing_template_flag(self, cli, capsys):
        with pytest.raises(SystemExit) as exc:
            cli("plan")
        assert exc.value.code == 2
        assert "requires --template" in capsys.readouterr().err

    def test_missing_store_is_error(self, cli, trees, capsys):
        template, project = trees
        assert cli(*_args(template, project, "plan")) == 1
        assert capsys.readouterr().err.startswith("Error:")


class TestApply:
    """Tests for the apply command."""

    def test_applies_plan(self, cli, synced, capsys):
        template, project = synced
        assert cli(*_args(template, project, "apply")) == 0
        assert (project / "src/a.ts").read_text() == "one\ntwo\n"
        assert "Copied:     1" in capsys.readouterr().out

    def test_dry_run(self, cli, synced):
        template, project = synced
        assert cli(*_args(template, project, "apply", "--dry-run")) == 0
        assert (project / "src/a.ts").read_text() == "one\n"

    def test_resolve_keep(self, cli, synced, read_state, capsys):
        template, project = synced
        cli(*_args(template, project, "apply"))
        (template / "src/a.ts").write_text("template edit\n")
        (project / "src/a.ts").write_text("project edit\n")
        capsys.readouterr()

        code = cli(*_args(template, project, "apply", "--resolve", "./src/a.ts=keep"))

        assert code == 0
        assert (project / "src/a.ts").read_text() == "project edit\n"
        assert "src/a.ts" in read_state()["projectOverrides"]
        assert "Kept (added to overrides):\n  src/a.ts" in capsys.readouterr().out

    def test_unresolved_left_as_conflict(self, cli, synced, capsys):
        template, project = synced
        cli(*_args(template, project, "apply"))
        (template / "src/a.ts").write_text("template edit\n")
        (project / "src/a.ts").write_text("project edit\n")
        capsys.readouterr()

        assert cli(*_args(template, project, "--json", "apply")) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["conflicts"] == ["src/a.ts"]

    @pytest.mark.parametrize("flag", ["src/a.ts=sometimes", "src/a.ts"])
    def test_bad_resolve_value(self, cli, synced, flag):
        template, project = synced
        with pytest.raises(SystemExit) as exc:
            cli(*_args(template, project, "apply", "--resolve", flag))
        assert exc.value.code == 2


class TestMergeManifest:
    """Tests for the merge-manifest command."""

    @pytest.fixture
    def manifests(self, make_project, write_tree):
        template, project = make_project([])
        write_tree(template, {"package.json": json.dumps({"version": "1.0.0"})})
        write_tree(project, {"package.json": json.dumps({"version": "2.0.0"})})
        return template, project

    def test_dry_run_lists_conflicts(self, cli, manifests, capsys):
        template, project = manifests
        code = cli(*_args(template, project, "merge-manifest", "--dry-run"))
        assert code == 0
        out = capsys.readouterr().out
        assert out.startswith("package.json:")
        assert 'Conflict in "version":' in out
        assert json.loads((project / "package.json").read_text()) == {
            "version": "2.0.0"
        }

    def test_dry_run_with_field_choice(self, cli, manifests, capsys):
        template, project = manifests
        code = cli(
            *_args(
                template,
                project,
                "--json",
                "merge-manifest",
                "--dry-run",
                "--field",
                "version=use-template",
            )
        )
        assert code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["conflicts"] == []
        assert data["merged"] == {"version": "1.0.0"}

    def test_writes_merge(self, cli, manifests):
        template, project = manifests
        code = cli(
            *_args(
                template, project, "merge-manifest", "--field", "version=use-template"
            )
        )
        assert code == 0
        assert json.loads((project / "package.json").read_text()) == {
            "version": "1.0.0"
        }


class TestDiff:
    """Tests for the diff command."""

    def test_preview(self, cli, synced, capsys):
        template, project = synced
        assert cli(*_args(template, project, "diff", "src/a.ts")) == 0
        out = capsys.readouterr().out
        assert out.splitlines()[:2] == ["src/a.ts: +1 -0", "  +two"]

    def test_json(self, cli, synced, capsys):
        template, project = synced
        cli(*_args(template, project, "--json", "diff", "./src/a.ts"))
        data = json.loads(capsys.readouterr().out)
        assert data["path"] == "src/a.ts"
        assert data["added"] == 1


class TestSettings:
    """Tests for init-config and settings loading."""

    def test_init_config_writes_starter(self, cli, capsys):
        assert cli("init-config") == 0
        path = cli.cwd / ".template_sync" / "config.yml"
        assert path.is_file()
        assert f"Settings file: {path}" in capsys.readouterr().out

    def test_invalid_settings_file(self, cli, synced, capsys):
        template, project = synced
        settings = cli.cwd / ".template_sync" / "config.yml"
        settings.parent.mkdir()
        settings.write_text("engine:\n  no_baseline_policy: sometimes\n")
        assert cli(*_args(template, project, "plan")) == 1
        assert "Invalid configuration" in capsys.readouterr().err

    def test_log_file_from_settings(self, cli, synced):
        template, project = synced
        settings = cli.cwd / ".template_sync" / "config.yml"
        settings.parent.mkdir()
        settings.write_text("logging:\n  level: WARNING\n  file: sync.log\n")
        cli(*_args(template, project, "plan"))
        kwargs = cli.setup_logging.call_args.kwargs
        assert kwargs["log_file"] == "sync.log"
        assert kwargs["level"] == "WARNING"

    def test_version_flag(self, cli, capsys):
        with pytest.raises(SystemExit) as exc:
            cli("--version")
        assert exc.value.code == 0
        assert __version__ in capsys.readouterr().out
