"""Command-line entry point for template-sync.

Thin wrapper over ``TemplateSyncEngine``: parses arguments, loads the
settings file and ``.env``, sets up logging, and prints plans and
reports.  There are no prompts; every decision is passed as a flag.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .config_loader import ensure_config, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .logger import setup_logging
from .sync import (
    FieldResolution,
    Resolution,
    TemplateSyncEngine,
    TemplateSyncError,
    format_execution_report,
    format_plan,
    plan_to_json,
    report_to_json,
    resolve_field_conflicts,
)
from .sync.manifest import format_conflict_message, format_merge_summary
from .validators import normalize_relative_path

logger = logging.getLogger(__name__)

_RESOLUTIONS = [r.value for r in Resolution]
_FIELD_RESOLUTIONS = [r.value for r in FieldResolution]


def _parse_assignment(raw: str, choices: list[str], flag: str) -> tuple[str, str]:
    """Split ``NAME=VALUE`` and check VALUE against *choices*."""
    name, sep, value = raw.rpartition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"{flag} expects NAME=VALUE, got {raw!r}")
    if value not in choices:
        raise argparse.ArgumentTypeError(
            f"{flag} {raw!r}: choose one of {', '.join(choices)}"
        )
    return name, value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="template-sync",
        description="Reconcile a project with the template it was created from",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview what a sync would do
  template-sync --template ../template plan

  # Apply, keeping the project's copy of one diverged file
  template-sync --template ../template apply --resolve src/app.ts=keep

  # Adopt the template for every conflict, take template values for scripts
  template-sync --template ../template apply --resolve-all override \\
      --field scripts.build=use-template

  # Show the field-level merge of package.json
  template-sync --template ../template merge-manifest --dry-run
        """,
    )
    parser.add_argument(
        "--template",
        type=Path,
        help="Path to a checkout of the template repository",
    )
    parser.add_argument(
        "--project",
        type=Path,
        default=Path("."),
        help="Project root (default: current directory)",
    )
    parser.add_argument(
        "--json", action="store_true", help="Print machine-readable JSON"
    )
    parser.add_argument(
        "--verbose", action="store_true", help="List every path with its reason"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--version",
        action="version",
        version=f"template-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("plan", help="Show the sync plan without changing anything")

    apply = sub.add_parser("apply", help="Apply the sync plan")
    apply.add_argument(
        "--resolve",
        action="append",
        default=[],
        metavar="PATH=RESOLUTION",
        help=f"Resolution for one path ({', '.join(_RESOLUTIONS)})",
    )
    apply.add_argument(
        "--resolve-all",
        choices=_RESOLUTIONS,
        default=Resolution.NONE.value,
        help="Resolution for every path needing a decision not given by --resolve",
    )
    _add_field_flag(apply)
    apply.add_argument(
        "--dry-run", action="store_true", help="Report without changing anything"
    )
    apply.add_argument(
        "--template-commit", help="Template revision to record in the sync history"
    )

    merge = sub.add_parser(
        "merge-manifest", help="Merge one manifest file field by field"
    )
    merge.add_argument(
        "path",
        nargs="?",
        help="Manifest path (default: first configured manifest file)",
    )
    _add_field_flag(merge)
    merge.add_argument(
        "--dry-run", action="store_true", help="Show the merge without writing it"
    )

    diff = sub.add_parser("diff", help="Show how one path differs from the template")
    diff.add_argument("path", help="Relative path to compare")

    sub.add_parser("init-config", help="Write a starter settings file")
    return parser


def _add_field_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--field",
        action="append",
        default=[],
        metavar="NAME=RESOLUTION",
        help=f"Resolution for one manifest field ({', '.join(_FIELD_RESOLUTIONS)})",
    )


def _collect(
    raws: list[str], choices: list[str], flag: str, normalize: bool = False
) -> dict[str, str]:
    result: dict[str, str] = {}
    for raw in raws:
        name, value = _parse_assignment(raw, choices, flag)
        result[normalize_relative_path(name) if normalize else name] = value
    return result


def _emit(args: argparse.Namespace, text: str, data: dict) -> None:
    if args.json:
        print(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        print(text)


def _cmd_plan(args: argparse.Namespace, engine: TemplateSyncEngine) -> int:
    plan = engine.plan()
    _emit(args, format_plan(plan, verbose=args.verbose), plan_to_json(plan))
    return 1 if plan.errors else 0


def _cmd_apply(args: argparse.Namespace, engine: TemplateSyncEngine) -> int:
    resolutions = _collect(args.resolve, _RESOLUTIONS, "--resolve", normalize=True)
    fields = _collect(args.field, _FIELD_RESOLUTIONS, "--field")
    report = engine.run(
        resolutions=resolutions,
        field_resolutions=fields,
        dry_run=args.dry_run,
        template_commit=args.template_commit,
        default_resolution=args.resolve_all,
    )
    _emit(args, format_execution_report(report), report_to_json(report))
    return 1 if report.errors else 0


def _cmd_merge_manifest(
    args: argparse.Namespace, engine: TemplateSyncEngine, config: UnifiedConfig
) -> int:
    path = args.path or (config.engine.manifest_files or ["package.json"])[0]
    path = normalize_relative_path(path)
    fields = _collect(args.field, _FIELD_RESOLUTIONS, "--field")

    if args.dry_run:
        result = resolve_field_conflicts(engine.preview_manifest(path), fields)
        lines = [f"{path}:", format_merge_summary(result)]
        lines.extend(format_conflict_message(c) for c in result.conflicts)
        _emit(args, "\n".join(lines), result.model_dump(mode="json"))
        return 0 if result.success else 1

    report = engine.run(field_resolutions=fields, only=[path])
    _emit(args, format_execution_report(report), report_to_json(report))
    return 1 if report.errors else 0


def _cmd_diff(args: argparse.Namespace, engine: TemplateSyncEngine) -> int:
    path = normalize_relative_path(args.path)
    summary = engine.describe_path(path)
    lines = [f"{path}: +{summary['added']} -{summary['removed']}"]
    if args.verbose:
        lines.append(summary["diff"].rstrip())
    else:
        lines.extend(f"  {line}" for line in summary["preview"])
    if summary["merge_preview"]:
        lines.extend(["", summary["merge_preview"]])
    _emit(args, "\n".join(lines), {"path": path, **summary})
    return 0


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run one command and return the exit code."""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(load_hierarchical_config())
    except TemplateSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(
        mode="cli",
        debug=args.debug,
        log_file=args.log_file or config.logging.file,
        level=config.logging.level,
    )

    if args.command == "init-config":
        path = ensure_config()
        print(f"Settings file: {path}")
        return 0

    if args.template is None:
        parser.error(f"{args.command} requires --template")

    engine = TemplateSyncEngine(
        template_root=args.template.resolve(),
        project_root=args.project.resolve(),
        config=config.engine,
    )

    try:
        if args.command == "plan":
            return _cmd_plan(args, engine)
        if args.command == "apply":
            return _cmd_apply(args, engine)
        if args.command == "diff":
            return _cmd_diff(args, engine)
        return _cmd_merge_manifest(args, engine, config)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    except (TemplateSyncError, OSError) as e:
        logger.error("%s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    run()
