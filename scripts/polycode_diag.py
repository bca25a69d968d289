"""Polycode MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from polycode_mcp.config import PolycodeSettings
from polycode_mcp.git import GitBackend, GitNotFoundError, GitRunner
from polycode_mcp.host import ExecutionHostError
from polycode_mcp.locations import Location, LocationLoadError, LocationLoader


def load_locations(settings: PolycodeSettings) -> dict[str, Location]:
    try:
        return LocationLoader(settings.location_paths).load_all()
    except LocationLoadError as exc:
        print(f"Locations invalid: {exc}")
        raise SystemExit(1)


def load_backend(settings: PolycodeSettings, locations: list[Location]) -> GitBackend:
    try:
        runner = GitRunner(Path(settings.git_path) if settings.git_path else None)
    except GitNotFoundError as exc:
        print(f"git unavailable: {exc}")
        raise SystemExit(1)
    return GitBackend(runner, locations=locations, remote_name=settings.remote_name)


def resolve_path(args: argparse.Namespace, locations: dict[str, Location]) -> str:
    if args.location is None:
        return str(Path(args.path).resolve())
    try:
        return locations[args.location].path
    except KeyError:
        print(f"Unknown location '{args.location}'")
        raise SystemExit(1)


def cmd_locations(args: argparse.Namespace) -> None:
    settings = PolycodeSettings()
    locations = load_locations(settings)
    if args.json:
        print(json.dumps([location.model_dump() for location in locations.values()], indent=2))
        return
    for location in locations.values():
        print(f"{location.id} [{location.connection_type}] {location.path}")


def cmd_git_status(args: argparse.Namespace) -> None:
    settings = PolycodeSettings()
    locations = load_locations(settings)
    path = resolve_path(args, locations)
    backend = load_backend(settings, list(locations.values()))
    try:
        status = asyncio.run(backend.git_status(path))
    except ExecutionHostError as exc:
        print(f"git failed: {exc}")
        raise SystemExit(1)
    if status is None:
        print(f"Not a git workspace: {path}")
        raise SystemExit(1)

    if args.json:
        print(json.dumps(status.model_dump(), indent=2))
        return
    print(f"{status.branch} (ahead {status.ahead}, behind {status.behind}) +{status.additions} -{status.deletions}")
    for change in status.files:
        marker = "staged" if change.staged else "unstaged"
        print(f"  {change.status} {change.path} [{marker}]")


def cmd_git_branches(args: argparse.Namespace) -> None:
    settings = PolycodeSettings()
    locations = load_locations(settings)
    path = resolve_path(args, locations)
    backend = load_backend(settings, list(locations.values()))
    try:
        branches = asyncio.run(backend.git_branches(path))
    except ExecutionHostError as exc:
        print(f"git failed: {exc}")
        raise SystemExit(1)
    print(json.dumps(branches.model_dump(), indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Polycode MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_locations = sub.add_parser("locations", help="List configured locations")
    p_locations.add_argument("--json", action="store_true", help="Output JSON")
    p_locations.set_defaults(func=cmd_locations)

    p_status = sub.add_parser("git-status", help="Show the git status snapshot of a workspace")
    p_status.add_argument("path", nargs="?", default=".")
    p_status.add_argument("--location", help="Use the path of a configured location")
    p_status.add_argument("--json", action="store_true", help="Output JSON")
    p_status.set_defaults(func=cmd_git_status)

    p_branches = sub.add_parser("git-branches", help="List local and remote branches")
    p_branches.add_argument("path", nargs="?", default=".")
    p_branches.add_argument("--location", help="Use the path of a configured location")
    p_branches.set_defaults(func=cmd_git_branches)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
