#!/usr/bin/env python3
"""roleflow CLI entrypoint."""

import argparse
import json
import logging
import sys
from pathlib import Path

from roleflow.dispatcher import Workspace, dispatch
from roleflow.lib.constants import OUTCOME_OK
from roleflow.lib.errors import EXIT_ERROR, EXIT_LOCKED, EXIT_OK, EXIT_VALIDATION, RoleflowError
from roleflow.modes.base import ModeReport
from roleflow.modes.status import format_status
from roleflow.runner.context import ModeOptions
from roleflow.runner.locking import LockTimeout

logger = logging.getLogger(__name__)


def parse_context_pair(value: str) -> tuple[str, str]:
    """Parse a --context KEY=VALUE argument."""
    key, sep, val = value.partition('=')
    key = key.strip()
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got '{value}'")
    return key, val.strip()


def options_from_args(args) -> ModeOptions:
    return ModeOptions(
        feature=getattr(args, 'feature', None),
        all=getattr(args, 'all', False),
        retry=getattr(args, 'retry', False),
        force=getattr(args, 'force', False),
        scope=getattr(args, 'scope', None),
        hard=getattr(args, 'hard', False),
        analyze=getattr(args, 'analyze', False),
        merge=getattr(args, 'merge', False),
        generalize=getattr(args, 'generalize', False),
        confirm=getattr(args, 'confirm', False),
        amend=getattr(args, 'amend', False),
        context=dict(getattr(args, 'context', None) or []),
    )


def print_report(report: ModeReport):
    if report.mode == "status":
        print(format_status(report))
        return

    print(f"{report.mode} ({report.action}): {report.outcome}")
    for f in report.features:
        line = f"  {f.feature_id:<28} {f.status or '-':<14} {f.outcome}"
        if f.attempts:
            line += f"  attempts={f.attempts}"
        print(line)
        if f.reason:
            print(f"      {f.reason[:200]}")
    for s in report.skipped:
        print(f"  {s['feature_id']:<28} skipped: {s['hint']}")
    for key in ("drafts", "baseline", "after", "files_written"):
        if report.details.get(key):
            print(f"  {key}: {report.details[key]}")
    if report.details.get("analysis"):
        print()
        print(report.details["analysis"])
    if report.mode_after and report.mode != "reset":
        print(f"Mode now: {report.mode_after}")
    if report.report_path:
        print(f"Report: {report.report_path}")


def run(args) -> int:
    """Dispatch one parsed command and map the outcome to an exit code."""
    workspace = Workspace(Path(args.directory))
    state, report = dispatch(args.mode, options_from_args(args), workspace)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        print_report(report)

    if report.outcome != OUTCOME_OK:
        return EXIT_VALIDATION
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='roleflow', description='Role-constrained behavior-first workflow')
    parser.add_argument('-C', dest='directory', default='.', help='Project root (default: current directory)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    parser.add_argument('--json', action='store_true', help='Print the report as JSON')
    subparsers = parser.add_subparsers(dest='mode', required=True, metavar='mode')

    # roleflow requirements
    p_req = subparsers.add_parser('requirements', help='Create and confirm specification documents')
    p_req.add_argument('feature', nargs='?', help='Feature ID')
    p_req.add_argument('--confirm', action='store_true', help='Confirm the specification (draft -> confirmed)')
    p_req.add_argument('--all', action='store_true', help='With --confirm: every draft')
    p_req.add_argument('--amend', action='store_true', help='Rewrite a confirmed specification (human override)')
    p_req.add_argument('--context', action='append', type=parse_context_pair, metavar='KEY=VALUE',
                       help='Record workflow context (repeatable)')
    p_req.add_argument('--force', action='store_true', help='Switch from another active mode')

    # roleflow steps
    p_steps = subparsers.add_parser('steps', help='Generate step definitions for confirmed features')
    p_steps.add_argument('feature', nargs='?', help='Feature ID (default: all confirmed)')
    p_steps.add_argument('--all', action='store_true', help='Every confirmed feature')
    p_steps.add_argument('--force', action='store_true', help='Switch from another active mode')

    # roleflow implement
    p_impl = subparsers.add_parser('implement', help='Implement business logic until scenarios pass')
    p_impl.add_argument('feature', nargs='?', help='Feature ID (default: all pending)')
    p_impl.add_argument('--all', action='store_true', help='Every pending feature')
    p_impl.add_argument('--retry', action='store_true', help='Include failed features')
    p_impl.add_argument('--force', action='store_true',
                        help='Include failed and completed features; switch from another active mode')

    # roleflow refactor / step-optimize
    p_ref = subparsers.add_parser('refactor', help='Restructure business logic (behavior-preserving)')
    p_opt = subparsers.add_parser('step-optimize', aliases=['step_optimize'],
                                  help='Consolidate step definitions (behavior-preserving)')
    for p in (p_ref, p_opt):
        p.add_argument('feature', nargs='?', help='Feature ID to focus on')
        p.add_argument('--scope', help='Limit to a path or module')
        p.add_argument('--analyze', action='store_true', help='Report opportunities only, change nothing')
        p.add_argument('--force', action='store_true', help='Switch from another active mode')
    p_opt.add_argument('--merge', action='store_true', help='Merge duplicate steps')
    p_opt.add_argument('--generalize', action='store_true', help='Parameterize near-duplicate steps')

    # roleflow status
    subparsers.add_parser('status', help='Show workflow status')

    # roleflow reset
    p_reset = subparsers.add_parser('reset', help='Leave the active mode')
    p_reset.add_argument('--hard', action='store_true', help='Also forget all features and history')

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    try:
        return run(args)
    except LockTimeout as e:
        print(f"ERROR: {e} (another roleflow invocation is running)")
        return EXIT_LOCKED
    except RoleflowError as e:
        print(f"ERROR: {e.message}")
        return e.exit_code
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return EXIT_ERROR


if __name__ == '__main__':
    sys.exit(main())
