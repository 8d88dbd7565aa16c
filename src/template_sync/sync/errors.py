"""Exception hierarchy for the template sync engine.

Only ``StoreError`` is fatal: the engine cannot reason about a run without
its baseline map, so it aborts before touching the filesystem.  Everything
else is recovered per path and aggregated into the plan or report.
"""

from __future__ import annotations


class TemplateSyncError(Exception):
    """Base class for all template sync errors."""


class StoreError(TemplateSyncError):
    """The ownership config or baseline store could not be read or written."""


class ManifestError(TemplateSyncError):
    """A structured manifest file is malformed."""


class ConfigError(TemplateSyncError):
    """Engine configuration is invalid."""
