"""Persisted ownership config and baseline map.

State lives in two JSON files at the project root:

* ``.template-sync.template.json`` -- template-owned: ``templatePaths``
  and ``templateIgnoredFiles``.  Refreshed from the template tree, never
  written back by the executor.
* ``.template-sync.json`` -- project-owned: repository coordinates,
  ``projectOverrides``, the baseline map ``overrideHashes``, manifest
  merge bases, pending contributions, and the last sync history entries.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Dict-based state** -- ``load()`` returns one merged plain ``dict`` so
  the executor can mutate it per path and persist immediately after each
  filesystem effect.
* **Fatal errors** -- any read, parse, or write failure raises
  ``StoreError``; the engine must not guess without its baseline map.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .errors import StoreError
from .models import ExecutionReport
from .ownership import OwnershipConfig

logger = logging.getLogger(__name__)

PROJECT_CONFIG_FILE = ".template-sync.json"
TEMPLATE_CONFIG_FILE = ".template-sync.template.json"
MAX_SYNC_HISTORY = 20

TEMPLATE_OWNED_KEYS = ("templatePaths", "templateIgnoredFiles")
PROJECT_OWNED_KEYS = (
    "templateRepo",
    "templateBranch",
    "templateLocalPath",
    "lastSyncCommit",
    "lastSyncDate",
    "projectOverrides",
    "overrideHashes",
    "manifestBases",
    "pendingContributions",
    "syncHistory",
)
LEGACY_KEYS = ("fileHashes", "ignoredFiles", "projectSpecificFiles")


def default_project_config() -> dict[str, Any]:
    """Return a fresh project-owned config with every key present."""
    return {
        "templateRepo": "",
        "templateBranch": "main",
        "templateLocalPath": None,
        "lastSyncCommit": None,
        "lastSyncDate": None,
        "projectOverrides": [],
        "overrideHashes": {},
        "manifestBases": {},
        "pendingContributions": [],
        "syncHistory": [],
    }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncStore:
    """Load, save, and query sync state for one project.

    Args:
        project_root: Root of the project tree.
        template_config_file: Name of the template-owned config file.
        project_config_file: Name of the project-owned config file.
    """

    def __init__(
        self,
        project_root: Path,
        template_config_file: str = TEMPLATE_CONFIG_FILE,
        project_config_file: str = PROJECT_CONFIG_FILE,
    ) -> None:
        self._project_root = project_root
        self.template_config_file = template_config_file
        self.project_config_file = project_config_file

    @property
    def template_config_path(self) -> Path:
        return self._project_root / self.template_config_file

    @property
    def project_config_path(self) -> Path:
        return self._project_root / self.project_config_file

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self, template_source: dict[str, Any] | None = None) -> dict[str, Any]:
        """Load and merge both config files.

        Args:
            template_source: The template tree's own template-owned config
                (see ``read_template_source``).  Applied on top of the
                project's copy, and stands in for it when that copy is
                missing.

        Returns:
            One state dict holding the template-owned and project-owned
            keys.  A missing project-owned file yields defaults.

        Raises:
            StoreError: If the template-owned file is missing, either file
                is unreadable or malformed, or the project-owned file uses
                the legacy hash-based format.
        """
        if self.template_config_path.exists():
            template_cfg = self._read_json(self.template_config_path)
        elif template_source is not None:
            template_cfg = {}
        else:
            raise StoreError(
                f"{self.template_config_file} not found in "
                f"{self._project_root}; copy it from the template repository"
            )

        state = default_project_config()
        if self.project_config_path.exists():
            project_cfg = self._read_json(self.project_config_path)
            legacy = [key for key in LEGACY_KEYS if key in project_cfg]
            if legacy:
                raise StoreError(
                    f"Legacy config format detected in "
                    f"{self.project_config_file}; remove: {', '.join(legacy)}"
                )
            state.update(project_cfg)

        for key in TEMPLATE_OWNED_KEYS:
            state[key] = list(template_cfg.get(key, []))

        if template_source is not None:
            self.apply_template_config(state, template_source)
        else:
            self.ownership(state)
        return state

    def save(self, state: dict[str, Any]) -> None:
        """Persist the project-owned part of *state* atomically.

        Template-owned keys are never written here.  Unknown keys already
        present in the project file are preserved.

        Raises:
            StoreError: If the file cannot be written.
        """
        payload: dict[str, Any] = {}
        for key, value in state.items():
            if key in TEMPLATE_OWNED_KEYS:
                continue
            payload[key] = value

        target = self.project_config_path
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(target.parent), prefix=".template-sync-", suffix=".tmp"
            )
        except OSError as e:
            raise StoreError(f"Cannot write {target}: {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2, ensure_ascii=False)
                fh.write("\n")
            os.replace(tmp_path, target)
        except BaseException as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            if isinstance(e, OSError):
                raise StoreError(f"Cannot write {target}: {e}") from e
            raise

    def ensure_writable(self) -> None:
        """Check that the project-owned config can be written.

        Raises:
            StoreError: If the directory or an existing file is not
                writable.
        """
        target = self.project_config_path
        if target.exists() and not os.access(target, os.W_OK):
            raise StoreError(f"{target} is not writable")
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(target.parent), prefix=".template-sync-", suffix=".check"
            )
            os.close(fd)
            os.unlink(tmp_path)
        except OSError as e:
            raise StoreError(f"Cannot write to {target.parent}: {e}") from e

    def write_template_config(self, template_cfg: dict[str, Any]) -> None:
        """Replace the template-owned config file (used by ``init``)."""
        payload = {key: template_cfg.get(key, []) for key in TEMPLATE_OWNED_KEYS}
        try:
            self.template_config_path.write_text(
                json.dumps(payload, indent=2) + "\n", encoding="utf-8"
            )
        except OSError as e:
            raise StoreError(f"Cannot write {self.template_config_path}: {e}") from e

    def sync_template_config(self, template_root: Path, dry_run: bool = False) -> bool:
        """Refresh the template-owned config from the template tree.

        Returns:
            ``True`` if the template's copy differs from the project's
            (and, unless *dry_run*, was copied over).
        """
        source = template_root / self.template_config_file
        if not source.is_file():
            return False
        try:
            content = source.read_text(encoding="utf-8")
            current = (
                self.template_config_path.read_text(encoding="utf-8")
                if self.template_config_path.exists()
                else None
            )
        except OSError as e:
            raise StoreError(f"Cannot read template config: {e}") from e

        if content == current:
            return False
        if not dry_run:
            try:
                self.template_config_path.write_text(content, encoding="utf-8")
            except OSError as e:
                raise StoreError(
                    f"Cannot write {self.template_config_path}: {e}"
                ) from e
            logger.info("Updated %s from template", self.template_config_file)
        return True

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def ownership(self, state: dict[str, Any]) -> OwnershipConfig:
        """Build the validated ``OwnershipConfig`` for *state*.

        Raises:
            StoreError: If a pattern or override entry is invalid.
        """
        try:
            return OwnershipConfig.model_validate(
                {
                    "templatePaths": state.get("templatePaths", []),
                    "templateIgnoredFiles": state.get("templateIgnoredFiles", []),
                    "projectOverrides": state.get("projectOverrides", []),
                }
            )
        except ValidationError as e:
            raise StoreError(f"Invalid ownership config: {e}") from e

    def read_template_source(self, template_root: Path) -> dict[str, Any] | None:
        """Parse the template tree's own copy of the template-owned config.

        Returns:
            The parsed object, or ``None`` when the template carries none.

        Raises:
            StoreError: If the file is unreadable, malformed or not an
                object.
        """
        source = template_root / self.template_config_file
        if not source.is_file():
            return None
        return self._read_json(source)

    def apply_template_config(
        self, state: dict[str, Any], template_cfg: dict[str, Any]
    ) -> None:
        """Apply the template tree's config to *state* in memory.

        ``templatePaths`` is taken from the template when present; its
        ``templateIgnoredFiles`` are unioned into the project's list.

        Raises:
            StoreError: If the resulting ownership rules are invalid.
        """
        if "templatePaths" in template_cfg:
            state["templatePaths"] = list(template_cfg["templatePaths"])
        merged = list(state.get("templateIgnoredFiles", []))
        for pattern in template_cfg.get("templateIgnoredFiles", []):
            if pattern not in merged:
                merged.append(pattern)
        state["templateIgnoredFiles"] = merged
        self.ownership(state)

    def add_override(self, state: dict[str, Any], path: str) -> bool:
        """Add *path* to ``projectOverrides``.  Returns ``True`` if added."""
        overrides = state.setdefault("projectOverrides", [])
        if path in overrides:
            return False
        overrides.append(path)
        return True

    def remove_override(self, state: dict[str, Any], path: str) -> bool:
        """Drop *path* from ``projectOverrides``.  Returns ``True`` if removed."""
        overrides = state.setdefault("projectOverrides", [])
        if path not in overrides:
            return False
        overrides.remove(path)
        return True

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    def baselines(self, state: dict[str, Any]) -> dict[str, str]:
        return state.setdefault("overrideHashes", {})

    def get_baseline(self, state: dict[str, Any], path: str) -> str | None:
        """Return the baseline fingerprint for *path*, or ``None``."""
        return state.get("overrideHashes", {}).get(path)

    def set_baseline(
        self, state: dict[str, Any], path: str, fingerprint: str
    ) -> None:
        self.baselines(state)[path] = fingerprint

    def remove_baseline(self, state: dict[str, Any], path: str) -> bool:
        return self.baselines(state).pop(path, None) is not None

    def prune_baselines(
        self, state: dict[str, Any], keep: set[str]
    ) -> list[str]:
        """Remove baseline entries not in *keep*.

        Returns:
            Sorted list of pruned paths.
        """
        baselines = self.baselines(state)
        stale = sorted(path for path in baselines if path not in keep)
        for path in stale:
            del baselines[path]
        return stale

    # ------------------------------------------------------------------
    # Manifest bases and contributions
    # ------------------------------------------------------------------

    def get_manifest_base(
        self, state: dict[str, Any], path: str
    ) -> dict[str, Any] | None:
        base = state.get("manifestBases", {}).get(path)
        return base if isinstance(base, dict) else None

    def set_manifest_base(
        self, state: dict[str, Any], path: str, manifest: dict[str, Any]
    ) -> None:
        state.setdefault("manifestBases", {})[path] = manifest

    def add_contribution(self, state: dict[str, Any], path: str) -> bool:
        pending = state.setdefault("pendingContributions", [])
        if path in pending:
            return False
        pending.append(path)
        return True

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def record_sync(
        self,
        state: dict[str, Any],
        report: ExecutionReport,
        template_commit: str | None = None,
        project_commit: str | None = None,
        template_commits: list[str] | None = None,
    ) -> dict[str, Any]:
        """Prepend a history entry for *report* and stamp the last sync.

        History is capped at ``MAX_SYNC_HISTORY`` entries, newest first.

        Returns:
            The new history entry.
        """
        date = report.completed_at or _now()
        entry = {
            "date": date,
            "templateCommit": template_commit,
            "projectCommit": project_commit,
            "filesApplied": len(report.applied),
            "filesSkipped": len(report.skipped),
            "filesConflicted": len(report.conflicts),
            "templateCommits": list(template_commits or []),
        }
        history = [entry] + list(state.get("syncHistory", []))
        state["syncHistory"] = history[:MAX_SYNC_HISTORY]
        state["lastSyncDate"] = date
        if template_commit:
            state["lastSyncCommit"] = template_commit
        return entry

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _read_json(path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        except OSError as e:
            raise StoreError(f"Cannot read {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise StoreError(f"Malformed JSON in {path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"{path} must contain a JSON object")
        return data
