import json
import tempfile
import unittest
from pathlib import Path

from sessionscope.discovery import DiscoveryEnvironment
from sessionscope.errors import InvalidArgumentError
from sessionscope.models import Pagination, SessionRoot
from sessionscope.project_store import ProjectStore
from sessionscope.service import ProjectIndexService


def _write_session(root: Path, day: str, session_id: str, cwd: str, prompt: str) -> Path:
    path = root / day / f"rollout-{session_id}.jsonl"
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [
        {"type": "session_meta", "payload": {"id": session_id, "cwd": cwd}},
        {"type": "response_item", "payload": {"type": "message", "role": "user", "content": prompt}},
    ]
    path.write_text("\n".join(json.dumps(line) for line in lines) + "\n", encoding="utf-8")
    return path


class ProjectIndexServiceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.tmp = Path(tmpdir.name)
        self.sessions = self.tmp / "sessions"
        _write_session(self.sessions, "2025/01/10", "s-1", "/home/u/app", "First")
        _write_session(self.sessions, "2025/01/11", "s-2", "/home/u/app/src", "Second")
        _write_session(self.sessions, "2025/01/11", "s-3", "/home/u/tool", "Third")

        self.store = ProjectStore(self.tmp / "data")
        self.service = ProjectIndexService(
            self.store,
            environment=DiscoveryEnvironment(
                session_roots=[SessionRoot(path=str(self.sessions), providerId="codex", exists=True)],
            ),
            debounce_ms=0,
        )

    async def asyncTearDown(self) -> None:
        await self.service.stop()

    async def test_list_projects_then_sessions(self) -> None:
        projects = await self.service.list_projects([])
        self.assertEqual(sorted(p.wslPath for p in projects), ["/home/u/app", "/home/u/app/src", "/home/u/tool"])
        self.assertEqual(self.service.state.last_report.strategiesRun, ["sessionReverseMap"])

        app = next(p for p in projects if p.wslPath == "/home/u/app")
        page = await self.service.list_sessions(app.id, Pagination(limit=10))
        self.assertEqual(sorted(s.id for s in page.items), ["s-1", "s-2"])
        self.assertEqual(page.total, 2)

        first = await self.service.list_sessions(app, Pagination(offset=0, limit=1))
        self.assertEqual(len(first.items), 1)
        self.assertEqual(first.total, 2)

    async def test_unknown_project_id_raises(self) -> None:
        with self.assertRaises(InvalidArgumentError):
            await self.service.list_sessions("P-missing")

    async def test_add_touch_remove(self) -> None:
        project_dir = self.tmp / "manual"
        project_dir.mkdir()

        project = await self.service.add_project(str(project_dir))
        self.assertIn(project.id, [p.id for p in self.service.state.projects])
        self.assertEqual(self.service.get_project(project.id).name, "manual")

        touched = await self.service.touch_project(project.id)
        self.assertIsNotNone(touched.lastOpenedAt)
        self.assertIsNone(await self.service.touch_project("P-missing"))

        self.assertTrue(await self.service.remove_project(project.id))
        self.assertFalse(await self.service.remove_project(project.id))
        self.assertIsNone(self.service.get_project(project.id))

    async def test_state_is_loaded_from_store(self) -> None:
        await self.service.list_projects([])
        reopened = ProjectIndexService(self.store, environment=DiscoveryEnvironment(), debounce_ms=0)
        self.assertEqual(len(reopened.state.projects), 3)
        self.assertIsNotNone(reopened.state.scan_meta)


if __name__ == "__main__":
    unittest.main()
