#!/usr/bin/env python3
"""Discover projects, or list one project's sessions.

Usage:
  sessionscope-scan
  sessionscope-scan --root D:\\code --root ~/work --json
  sessionscope-scan --sessions P-1a2b3c4d5e6f --limit 20
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from sessionscope import observability
from sessionscope.errors import InvalidArgumentError
from sessionscope.models import DiscoverySettings, Pagination
from sessionscope.project_store import ProjectStore
from sessionscope.service import ProjectIndexService


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sessionscope-scan")
    parser.add_argument("--data-dir", default="", help="directory holding projects.json")
    parser.add_argument("--root", action="append", default=[], help="scan root (repeatable)")
    parser.add_argument("--distro", action="append", default=None, help="limit WSL distros (repeatable)")
    parser.add_argument("--history-root", default="", help="override the Codex sessions directory")
    parser.add_argument("--include-agent-history", action="store_true")
    parser.add_argument("--add", default="", help="register a project directory and exit")
    parser.add_argument("--sessions", default="", metavar="PROJECT_ID", help="list sessions of a project")
    parser.add_argument("--offset", type=int, default=0)
    parser.add_argument("--limit", type=int, default=None)
    parser.add_argument("--json", action="store_true")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def _fmt_ms(value: Optional[int]) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M")


async def _run(args: argparse.Namespace) -> int:
    store = ProjectStore(Path(args.data_dir).expanduser()) if args.data_dir else ProjectStore()
    settings = DiscoverySettings(
        roots=args.root,
        historyRoot=args.history_root or None,
        distros=args.distro,
        includeAgentHistory=args.include_agent_history,
    )
    service = ProjectIndexService(store, settings=settings)
    try:
        return await _execute(service, args)
    except InvalidArgumentError as exc:
        print(f"Error: {exc}")
        return 2


async def _execute(service: ProjectIndexService, args: argparse.Namespace) -> int:
    if args.add:
        project = await service.add_project(args.add)
        if args.json:
            print(json.dumps(project.model_dump(), indent=2))
        else:
            print(f"{project.id}  {project.name}  win={project.winPath or '-'}  wsl={project.wslPath or '-'}")
        return 0

    if args.sessions:
        await service.list_projects(args.root or None)
        page = await service.list_sessions(args.sessions, Pagination(offset=args.offset, limit=args.limit))
        if args.json:
            print(json.dumps(page.model_dump(), indent=2))
            return 0
        print(f"Sessions: {len(page.items)} of {page.total}")
        for s in page.items:
            print(f"{_fmt_ms(s.date)}  [{s.providerId}] {s.title}")
            print(f"    {s.filePath}")
        return 0

    projects = await service.list_projects(args.root or None)
    report = service.state.last_report
    if args.json:
        payload = {
            "projects": [p.model_dump() for p in projects],
            "report": report.model_dump(mode="json") if report else None,
        }
        print(json.dumps(payload, indent=2))
        return 0

    for idx, p in enumerate(projects, start=1):
        marker = "*" if p.hasMarkerFile else " "
        print(f"{idx:03d}.{marker} {p.name}")
        print(f"      win={p.winPath or '-'}  wsl={p.wslPath or '-'}  opened={_fmt_ms(p.lastOpenedAt)}")
    if report is not None:
        print("")
        print(
            f"{report.projects} project(s) in {report.durationMs}ms"
            f"{' (fast path)' if report.fastPath else ''}; issues={len(report.issues)}"
        )
        for issue in report.issues:
            print(f"    {issue.kind.value} {issue.strategy} {issue.target}: {issue.detail}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    observability.initialize()
    try:
        return asyncio.run(_run(args))
    finally:
        observability.shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
