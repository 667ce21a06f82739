"""threadtree diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json

from threadtree.config import ThreadtreeSettings, load_settings
from threadtree.errors import ConfigurationInvalid, ThreadtreeError
from threadtree.workspace import RepositoryStore, WorktreeManager


def load_config() -> ThreadtreeSettings:
    try:
        return load_settings()
    except ConfigurationInvalid as exc:
        print(f"Configuration invalid: {exc}")
        raise SystemExit(1)


def cmd_repos(args: argparse.Namespace) -> None:
    settings = load_config()
    names = RepositoryStore(settings.base_work_dir).list_names()
    if args.json:
        print(json.dumps(names, indent=2))
    else:
        for name in names:
            print(name)


def cmd_worktrees(args: argparse.Namespace) -> None:
    settings = load_config()
    manager = WorktreeManager(settings.base_work_dir)
    try:
        records = asyncio.run(manager.list_channel_worktrees(args.channel_id))
    except ThreadtreeError as exc:
        print(f"Worktree listing failed: {exc}")
        raise SystemExit(1)
    print(json.dumps([record.as_dict() for record in records], indent=2))


def cmd_config(args: argparse.Namespace) -> None:
    settings = load_config()
    payload = settings.model_dump(mode="json")
    payload["allowed_tool_list"] = list(settings.allowed_tool_list)
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="threadtree diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_repos = sub.add_parser("repos", help="List cloned repositories")
    p_repos.add_argument("--json", action="store_true", help="Output JSON")
    p_repos.set_defaults(func=cmd_repos)

    p_worktrees = sub.add_parser("worktrees", help="List thread worktrees for a channel")
    p_worktrees.add_argument("channel_id")
    p_worktrees.set_defaults(func=cmd_worktrees)

    p_config = sub.add_parser("config", help="Show the effective configuration")
    p_config.set_defaults(func=cmd_config)

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
