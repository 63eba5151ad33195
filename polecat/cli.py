from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional, Tuple

from dotenv import load_dotenv

from polecat.claims import ClaimCoordinator
from polecat.config import Settings, get_settings
from polecat.dispatch import DispatchOrchestrator, SlingOptions, run_followup
from polecat.exceptions import PolecatError, PolecatInputError, InvalidTransitionError
from polecat.git import GitWorktreeCreator, probe_sandbox
from polecat.metrics import get_dispatch_metrics
from polecat.models import Preference, SandboxState
from polecat.registry import SandboxRegistry, SQLiteRegistry
from polecat.session import TmuxSessionStarter

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USER_ERROR = 2


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="polecat",
        description="Dispatch work into polecat sandboxes.",
        epilog="For sling, anything after -- runs inside the dispatched polecat.",
    )
    parser.add_argument("--log-level", help="Logging level (default from POLECAT_LOG_LEVEL).")
    sub = parser.add_subparsers(dest="command_name", required=True)

    sling = sub.add_parser("sling", help="Dispatch into a reused or fresh polecat.")
    sling.add_argument("rig", help="Rig to dispatch into.")
    sling.add_argument(
        "--reuse", action="store_true", help="Reuse an idle polecat and start its session."
    )
    sling.add_argument("--name", help="Reuse exactly this idle polecat.")
    # Validated by the engine so unknown values are reported like other input errors.
    sling.add_argument(
        "--prefer",
        help=f"Idle polecat ranking: {', '.join(Preference.choices())} (default any).",
    )
    sling.add_argument(
        "--no-session", action="store_true", help="Do not start a session."
    )
    sling.add_argument(
        "--dry-run", action="store_true", help="Print the decision without acting."
    )

    list_ = sub.add_parser("list", help="List polecats in a rig.")
    list_.add_argument("rig")
    list_.add_argument("--json", action="store_true", help="Emit JSON.")

    release = sub.add_parser("release", help="Return an active polecat to idle.")
    release.add_argument("rig")
    release.add_argument("name")

    destroy = sub.add_parser("destroy", help="Mark a polecat destroyed.")
    destroy.add_argument("rig")
    destroy.add_argument("name")

    return parser.parse_args(argv)


def _build_registry(settings: Settings) -> SandboxRegistry:
    return SQLiteRegistry(settings.db_path)


def _build_orchestrator(
    settings: Settings, registry: SandboxRegistry
) -> DispatchOrchestrator:
    return DispatchOrchestrator(
        registry,
        creator=GitWorktreeCreator(settings.rigs_root, registry),
        starter=TmuxSessionStarter(settings.tmux),
        recorder=get_dispatch_metrics(),
        cleanliness_probe=probe_sandbox,
    )


def _split_followup(argv: List[str]) -> Tuple[List[str], List[str]]:
    # Everything after the first "--" is the follow-up command, verbatim.
    if "--" not in argv:
        return argv, []
    index = argv.index("--")
    return argv[:index], argv[index + 1 :]


def _sling(
    args: argparse.Namespace,
    settings: Settings,
    registry: SandboxRegistry,
    command: List[str],
) -> int:
    options = SlingOptions(
        rig=args.rig,
        name=args.name,
        preference=args.prefer,
        reuse=args.reuse,
        no_session=args.no_session,
        dry_run=args.dry_run,
        hold=bool(command),
    )
    orchestrator = _build_orchestrator(settings, registry)
    result = orchestrator.sling(options)
    for warning in result.warnings:
        print(f"warning: {warning}", file=sys.stderr)
    print(result.describe())
    if command and not result.dry_run:
        try:
            return run_followup(result, command)
        finally:
            orchestrator.finish(result)
    return EXIT_OK


def _list(args: argparse.Namespace, registry: SandboxRegistry) -> int:
    sandboxes = registry.list(args.rig)
    if args.json:
        print(json.dumps([s.model_dump(mode="json") for s in sandboxes], ensure_ascii=True))
        return EXIT_OK
    for s in sandboxes:
        print(f"{s.name}\t{s.state.value}\t{s.created_at.isoformat()}\t{s.clone_path}")
    return EXIT_OK


def _release(args: argparse.Namespace, registry: SandboxRegistry) -> int:
    current = registry.get(args.rig, args.name)
    if current is None or current.state == SandboxState.DESTROYED:
        print(f"no polecat named {args.name!r} in rig {args.rig!r}", file=sys.stderr)
        return EXIT_USER_ERROR
    if ClaimCoordinator(registry).release(current) is None:
        print(
            f"polecat {args.name!r} is not active (state={current.state.value})",
            file=sys.stderr,
        )
        return EXIT_USER_ERROR
    print(f"released polecat {args.name} in rig {args.rig}")
    return EXIT_OK


def _destroy(args: argparse.Namespace, registry: SandboxRegistry) -> int:
    if not registry.destroy(args.rig, args.name):
        print(f"no live polecat named {args.name!r} in rig {args.rig!r}", file=sys.stderr)
        return EXIT_USER_ERROR
    print(f"destroyed polecat {args.name} in rig {args.rig}")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    argv, followup = _split_followup(list(sys.argv[1:] if argv is None else argv))
    args = _parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, (args.log_level or settings.log_level).upper(), logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    try:
        registry = _build_registry(settings)
        if args.command_name == "sling":
            return _sling(args, settings, registry, followup)
        if args.command_name == "list":
            return _list(args, registry)
        if args.command_name == "release":
            return _release(args, registry)
        return _destroy(args, registry)
    except (PolecatInputError, InvalidTransitionError) as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return EXIT_USER_ERROR
    except PolecatError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return EXIT_FAILURE
    except Exception as exc:  # noqa: BLE001
        print(str(exc), file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
