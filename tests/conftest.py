"""Shared pytest fixtures for template-sync tests."""

import json
from pathlib import Path

import pytest
from dotenv import load_dotenv

from template_sync.sync.store import PROJECT_CONFIG_FILE, TEMPLATE_CONFIG_FILE

load_dotenv()


def _write_tree(root: Path, files: dict[str, str]) -> None:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


@pytest.fixture
def write_tree():
    """Return a helper that writes ``{relative_path: text}`` under a root."""
    return _write_tree


@pytest.fixture
def trees(tmp_path: Path) -> tuple[Path, Path]:
    """Empty ``(template_root, project_root)`` directories."""
    template = tmp_path / "template"
    project = tmp_path / "project"
    template.mkdir()
    project.mkdir()
    return template, project


@pytest.fixture
def make_project(trees):
    """Factory writing the two store files into the project tree.

    Returns ``(template_root, project_root)``.
    """

    def _make(
        template_paths: list[str],
        ignored: list[str] | None = None,
        overrides: list[str] | None = None,
        **project_fields,
    ) -> tuple[Path, Path]:
        template, project = trees
        (project / TEMPLATE_CONFIG_FILE).write_text(
            json.dumps(
                {
                    "templatePaths": template_paths,
                    "templateIgnoredFiles": ignored or [],
                }
            ),
            encoding="utf-8",
        )
        project_cfg = {"templateRepo": "https://example.com/template.git"}
        project_cfg["projectOverrides"] = overrides or []
        project_cfg.update(project_fields)
        (project / PROJECT_CONFIG_FILE).write_text(
            json.dumps(project_cfg), encoding="utf-8"
        )
        return template, project

    return _make


@pytest.fixture
def read_state(trees):
    """Return a helper reading the project-owned state file as a dict."""

    def _read() -> dict:
        _, project = trees
        return json.loads(
            (project / PROJECT_CONFIG_FILE).read_text(encoding="utf-8")
        )

    return _read
