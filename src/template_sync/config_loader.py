"""
Hierarchical settings loader for template_sync.

Engine settings (manifest files, deep-merge fields, no-baseline policy,
logging) live in YAML.  This module finds the settings files, expands
``!include`` directives and ``${VAR:-default}`` references, and merges
them with "project wins" semantics.

Usage:
    from template_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from .sync.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TEMPLATE_SYNC_CONFIG"
PROJECT_CONFIG_DIR = ".template_sync"
CONFIG_FILE_NAME = "config.yml"

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty variable falls back to *default*, or to ``""``
    without one.  An unterminated ``${`` is left as-is.
    """

    def _substitute(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) if match.group(2) is not None else ""

    return _ENV_VAR_PATTERN.sub(_substitute, value)


def _expand(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {key: _expand(val) for key, val in obj.items()}
    if isinstance(obj, list):
        return [_expand(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# 2. YAML !include support
# ---------------------------------------------------------------------------


class SettingsLoader(yaml.SafeLoader):
    """``yaml.SafeLoader`` with an ``!include`` tag.

    A subclass keeps the global ``SafeLoader`` untouched.  Each load
    carries the chain of files being read to reject include cycles.
    """


def _include(loader: SettingsLoader, node: yaml.ScalarNode) -> Any:
    """Load the file named by ``!include`` relative to the including file."""
    target = Path(loader.construct_scalar(node))
    including_file = Path(loader.name).resolve()
    if not target.is_absolute():
        target = including_file.parent / target
    target = target.resolve()

    chain: list[Path] = getattr(loader, "_chain", [])
    if target in chain:
        cycle = " -> ".join(str(p) for p in [*chain, target])
        raise ConfigError(f"Circular include detected: {cycle}")

    if not target.exists():
        raise ConfigError(
            f"Include file not found: {target} (referenced from {including_file})"
        )

    return _load_yaml(target, chain=[*chain, target])


SettingsLoader.add_constructor("!include", _include)


def _load_yaml(path: Path, *, chain: list[Path] | None = None) -> Any:
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = SettingsLoader(fh)
        loader._chain = chain or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing settings files, highest precedence first.

    Search order:
        1. ``TEMPLATE_SYNC_CONFIG`` env var (explicit single path)
        2. ``.template_sync/config.yml`` in CWD (project-level)
        3. ``~/.config/template_sync/config.yml`` (XDG global)
    """
    candidates: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    candidates.append(Path.cwd() / PROJECT_CONFIG_DIR / CONFIG_FILE_NAME)
    candidates.append(
        Path.home() / ".config" / "template_sync" / CONFIG_FILE_NAME
    )

    return [p for p in candidates if p.exists()]


_STARTER_CONFIG = """\
# template-sync settings
#
# engine:
#   manifest_files:
#     - package.json
#   deep_merge_fields:
#     - scripts
#     - dependencies
#     - devDependencies
#     - peerDependencies
#     - optionalDependencies
#     - engines
#     - config
#   # conflict: never overwrite a differing file that predates baselines
#   # copy: let the template win
#   no_baseline_policy: conflict
#   template_config_file: .template-sync.template.json
#   project_config_file: .template-sync.json
#
# logging:
#   level: ${LOG_LEVEL:-INFO}
#   file: null
"""


def resolve_config_path() -> Path:
    """Return the active settings file, or the project-level default path.

    Does not create anything; see ``ensure_config()``.
    """
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / PROJECT_CONFIG_DIR / CONFIG_FILE_NAME


def ensure_config(target: Path | None = None) -> Path:
    """Return the active settings file, writing a starter one if none exists.

    Args:
        target: Where to create the starter file.  Defaults to
            ``resolve_config_path()``.

    Returns:
        Path to the existing or newly created file.
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Settings file already exists: %s", existing[0])
        return existing[0]

    config_path = target or resolve_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter settings: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# 4. Hierarchical merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load and merge every discovered settings file.

    Files are applied from lowest to highest precedence; top-level keys
    of a later file **replace** earlier ones.  Env var references are
    expanded after merging.

    Returns:
        The merged dict, empty when no file exists (zero-config).

    Raises:
        ConfigError: If a file is not valid YAML or an include fails.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No settings files found; using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading settings: %s", path)
        try:
            data = _load_yaml(path)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Settings file %s has non-dict root (%s); skipping",
                path,
                type(data).__name__,
            )

    return _expand(merged)
