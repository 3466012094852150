import json
import tempfile
import unittest
from pathlib import Path

from sessionscope.history import HistoryFallback, deep_extract_cwd, fallback_roots
from sessionscope.models import Project, SessionRoot
from sessionscope.session_query import SessionIndexQuery, build_needles


def _filler_lines(count: int) -> list[str]:
    blob = "x" * 120
    return [
        json.dumps({"type": "response_item", "payload": {"type": "reasoning", "encrypted_content": blob}})
        for _ in range(count)
    ]


class DeepExtractTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.tmp = Path(tmpdir.name)

    def _write(self, name: str, lines: list[str]) -> Path:
        path = self.tmp / name
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    def test_finds_marker_far_past_prefix(self) -> None:
        marker = json.dumps({"type": "message", "content": "<cwd>/home/u/app</cwd>"})
        path = self._write("deep.jsonl", _filler_lines(2500) + [marker])
        self.assertEqual(deep_extract_cwd(str(path)), "/home/u/app")

    def test_respects_byte_budget(self) -> None:
        marker = json.dumps({"type": "message", "content": "Current working directory: /home/u/app"})
        path = self._write("deep.jsonl", _filler_lines(2500) + [marker])
        self.assertIsNone(deep_extract_cwd(str(path), max_bytes=64 * 1024))

    def test_missing_file(self) -> None:
        self.assertIsNone(deep_extract_cwd(str(self.tmp / "missing.jsonl")))


class HistoryFallbackTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.tmp = Path(tmpdir.name)
        self.sessions = self.tmp / "sessions"
        day = self.sessions / "2025" / "01" / "10"
        day.mkdir(parents=True)

        header = json.dumps({"type": "session_meta", "payload": {"id": "deep-1", "timestamp": "2025-01-10T10:00:00Z"}})
        marker = json.dumps({"type": "message", "content": "<cwd>/home/u/app</cwd>"})
        (day / "rollout-deep.jsonl").write_text(
            "\n".join([header] + _filler_lines(2000) + [marker]) + "\n", encoding="utf-8"
        )
        neighbour = json.dumps(
            {"type": "session_meta", "payload": {"id": "near-1", "cwd": "/home/u/app-extra"}}
        )
        (day / "rollout-near.jsonl").write_text(neighbour + "\n", encoding="utf-8")

    def _roots(self) -> list[SessionRoot]:
        return [SessionRoot(path=str(self.sessions), providerId="codex", exists=True)]

    def test_deep_cwd_match_with_boundary(self) -> None:
        project = Project(id="P-1", wslPath="/home/u/app")
        fallback = HistoryFallback(self._roots(), include_agent_history=False)

        [summary] = fallback(project, build_needles(project))

        self.assertEqual(summary.id, "deep-1")
        self.assertEqual(summary.cwd, "/home/u/app")
        self.assertEqual(summary.dirKey, "/home/u/app")

    def test_query_uses_fallback_for_empty_snapshot(self) -> None:
        project = Project(id="P-1", wslPath="/home/u/app-extra")
        query = SessionIndexQuery(fallback=HistoryFallback(self._roots(), include_agent_history=False))

        page = query.page(project, [])

        self.assertEqual([s.id for s in page.items], ["near-1"])
        self.assertEqual(page.total, 1)

    def test_history_root_override_replaces_codex_stores(self) -> None:
        claude = SessionRoot(path=str(self.tmp / "claude"), providerId="claude", exists=True)
        gone = SessionRoot(path=str(self.tmp / "gone"), providerId="gemini", exists=False)

        roots = fallback_roots(self._roots() + [claude, gone], history_root=f"@{self.tmp}")

        self.assertEqual([(r.path, r.providerId) for r in roots], [(str(self.tmp), "codex"), (claude.path, "claude")])
        self.assertTrue(roots[0].exists)
        self.assertEqual(fallback_roots([gone]), [])


if __name__ == "__main__":
    unittest.main()
