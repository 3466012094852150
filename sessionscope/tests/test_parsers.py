import hashlib
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from sessionscope.parsers.common import (
    clamp_text,
    filter_preview_text,
    is_context_block,
    looks_numeric_only,
    title_from_filename,
)
from sessionscope.parsers.platforms import registry
from sessionscope.parsers.platforms.claude_code import parser as claude_parser
from sessionscope.parsers.platforms.codex import parser as codex_parser
from sessionscope.parsers.platforms.gemini import parser as gemini_parser


class _TmpMixin:
    def _tmp(self) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        return Path(tmpdir.name)

    def _write_jsonl(self, path: Path, lines: list) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        rendered = [line if isinstance(line, str) else json.dumps(line) for line in lines]
        path.write_text("\n".join(rendered) + "\n", encoding="utf-8")
        return path


class CommonHelperTests(unittest.TestCase):
    def test_preview_skips_bare_path_lines(self) -> None:
        self.assertEqual(filter_preview_text("/home/u/app\n\n`C:\\code`\nPlease fix it"), "Please fix it")

    def test_clamp_text_drops_code_fences_and_truncates(self) -> None:
        self.assertEqual(clamp_text("a ```code``` b\nc"), "a b c")
        clamped = clamp_text("x" * 500, max_chars=10)
        self.assertEqual(len(clamped), 10)
        self.assertTrue(clamped.endswith("…"))

    def test_title_helpers(self) -> None:
        self.assertEqual(
            title_from_filename("/s/rollout-2025-01-10T10-00-00-abc.jsonl"),
            "2025-01-10 10:00:00",
        )
        self.assertTrue(looks_numeric_only("2025-01-10"))
        self.assertTrue(looks_numeric_only("42"))
        self.assertFalse(looks_numeric_only("Add login"))
        self.assertTrue(is_context_block("<environment_context>\n<cwd>/x</cwd>"))
        self.assertFalse(is_context_block("Fix <b> tags"))


class CodexParserTests(_TmpMixin, unittest.TestCase):
    def test_modern_header_cwd_and_summary(self) -> None:
        path = self._write_jsonl(
            self._tmp() / "2025" / "01" / "10" / "rollout-2025-01-10T10-00-00-abc.jsonl",
            [
                {"type": "session_meta", "payload": {"id": "s-1", "timestamp": "2025-01-10T10:00:00Z", "cwd": "/home/u/app"}},
                {"type": "response_item", "payload": {"type": "message", "role": "user",
                                                      "content": [{"type": "input_text", "text": "<user_instructions>be nice</user_instructions>"}]}},
                {"type": "response_item", "payload": {"type": "message", "role": "user",
                                                      "content": [{"type": "input_text", "text": "Add a login page"}]}},
            ],
        )

        self.assertEqual(codex_parser.extract_cwd(str(path)), "/home/u/app")
        summary = codex_parser.parse_summary(str(path))
        self.assertIsNotNone(summary)
        assert summary is not None
        self.assertEqual(summary.id, "s-1")
        self.assertEqual(summary.resumeId, "s-1")
        self.assertEqual(summary.title, "Add a login page")
        self.assertEqual(summary.preview, "Add a login page")
        self.assertEqual(summary.dirKey, "/home/u/app")
        self.assertEqual(summary.rawDate, "2025-01-10T10:00:00Z")
        self.assertEqual(summary.date, os.stat(path).st_mtime_ns // 1_000_000)

    def test_legacy_layout_uses_text_marker(self) -> None:
        path = self._write_jsonl(
            self._tmp() / "rollout-legacy.jsonl",
            [
                {"id": "legacy-1", "timestamp": "2024-06-01T08:00:00Z", "instructions": ""},
                {"type": "message", "role": "user",
                 "content": [{"type": "input_text", "text": "<environment_context>\n<cwd>C:\\code\\site</cwd>\n</environment_context>"}]},
                {"type": "message", "role": "assistant", "content": [{"type": "output_text", "text": "Hello"}]},
            ],
        )

        self.assertEqual(codex_parser.extract_cwd(str(path)), r"C:\code\site")
        summary = codex_parser.parse_summary(str(path))
        assert summary is not None
        self.assertEqual(summary.id, "legacy-1")
        self.assertIsNone(summary.preview)
        self.assertEqual(summary.title, "Hello")
        self.assertEqual(summary.dirKey, "/mnt/c/code/site")

    def test_title_falls_back_to_filename(self) -> None:
        path = self._write_jsonl(
            self._tmp() / "rollout-2025-02-03T04-05-06-xyz.jsonl",
            [{"type": "session_meta", "payload": {"id": "s-2"}}],
        )
        summary = codex_parser.parse_summary(str(path))
        assert summary is not None
        self.assertEqual(summary.title, "2025-02-03 04:05:06")
        self.assertIsNone(summary.cwd)
        self.assertEqual(summary.dirKey, str(path.parent).lower())

    def test_first_line_candidates(self) -> None:
        path = self._write_jsonl(
            self._tmp() / "rollout-a.jsonl",
            [
                {"type": "session_meta", "payload": {"id": "s", "cwd": "/home/u/app", "git": {"repo": "/home/u/repo"}}},
                {"type": "message", "role": "user", "content": "see /home/u/elsewhere"},
            ],
        )
        self.assertEqual(codex_parser.first_line_candidates(str(path)), ["/home/u/app", "/home/u/repo"])

    def test_details_count_messages_and_malformed_lines(self) -> None:
        path = self._write_jsonl(
            self._tmp() / "rollout-b.jsonl",
            [
                {"type": "session_meta", "payload": {"id": "s-3", "cwd": "/home/u/app"}},
                {"type": "response_item", "payload": {"type": "message", "role": "user", "content": "hi"}},
                "{not json",
                {"type": "response_item", "payload": {"type": "message", "role": "assistant", "content": "hello"}},
            ],
        )
        details = codex_parser.parse_details(str(path))
        assert details is not None
        self.assertEqual(details.messageCount, 2)
        self.assertEqual(details.skippedLines, 1)

    def test_discovery_walks_newest_first(self) -> None:
        root = self._tmp()
        self._write_jsonl(root / "2025" / "01" / "09" / "a.jsonl", [{}])
        self._write_jsonl(root / "2025" / "01" / "10" / "b.jsonl", [{}])
        (root / "2025" / "01" / "10" / "notes.txt").write_text("x", encoding="utf-8")

        files = codex_parser.discover_session_files(str(root))
        self.assertEqual([os.path.basename(f) for f in files], ["b.jsonl", "a.jsonl"])


class ClaudeParserTests(_TmpMixin, unittest.TestCase):
    def test_discovery_skips_agent_history_and_vendored_dirs(self) -> None:
        root = self._tmp()
        project = root / "projects" / "-home-u-app"
        self._write_jsonl(project / "s1.jsonl", [{}])
        self._write_jsonl(project / "agent-x.jsonl", [{}])
        self._write_jsonl(project / "node_modules" / "dep.jsonl", [{}])

        names = [os.path.basename(f) for f in claude_parser.discover_session_files(str(root))]
        self.assertEqual(names, ["s1.jsonl"])
        with_agents = claude_parser.discover_session_files(str(root), include_agent_history=True)
        self.assertEqual(sorted(os.path.basename(f) for f in with_agents), ["agent-x.jsonl", "s1.jsonl"])

    def test_summary_skips_meta_and_tool_results(self) -> None:
        path = self._write_jsonl(
            self._tmp() / "projects" / "p" / "s1.jsonl",
            [
                {"type": "summary", "summary": "old"},
                {"type": "user", "isMeta": True, "sessionId": "c-1", "timestamp": "2025-03-01T00:00:00Z",
                 "cwd": "/home/u/app", "message": {"role": "user", "content": "meta noise"}},
                {"type": "user", "sessionId": "c-1", "cwd": "/home/u/app",
                 "message": {"role": "user", "content": [{"type": "tool_result", "content": "output"}]}},
                {"type": "user", "sessionId": "c-1", "cwd": "/home/u/app",
                 "message": {"role": "user", "content": [{"type": "text", "text": "Refactor the parser"}]}},
                {"type": "assistant", "sessionId": "c-1", "message": {"role": "assistant", "content": "ok"}},
            ],
        )

        self.assertEqual(claude_parser.extract_cwd(str(path)), "/home/u/app")
        summary = claude_parser.parse_summary(str(path))
        assert summary is not None
        self.assertEqual(summary.providerId, "claude")
        self.assertEqual(summary.id, "c-1")
        self.assertEqual(summary.title, "Refactor the parser")
        self.assertEqual(summary.rawDate, "2025-03-01T00:00:00Z")
        self.assertEqual(summary.dirKey, "/home/u/app")

        details = claude_parser.parse_details(str(path))
        assert details is not None
        self.assertEqual(details.messageCount, 4)

    def test_empty_file_has_no_summary(self) -> None:
        path = self._tmp() / "empty.jsonl"
        path.write_text("", encoding="utf-8")
        self.assertIsNone(claude_parser.parse_summary(str(path)))


class GeminiParserTests(_TmpMixin, unittest.TestCase):
    def _session(self, root: Path, hashed_path: str, payload: dict) -> Path:
        project_hash = hashlib.sha256(hashed_path.encode("utf-8")).hexdigest()
        path = root / project_hash / "chats" / "session-2025-01-10T10-00-abc.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def _payload(self) -> dict:
        return {
            "sessionId": "g-1",
            "startTime": "2025-01-10T10:00:00Z",
            "messages": [
                {"type": "user", "content": "Run the tests in /home/u/app please"},
                {"type": "gemini", "content": "Done"},
            ],
        }

    def test_cwd_kept_when_hash_verifies(self) -> None:
        root = self._tmp()
        path = self._session(root, "/home/u/app", self._payload())

        self.assertEqual(gemini_parser.extract_cwd(str(path)), "/home/u/app")
        summary = gemini_parser.parse_summary(str(path))
        assert summary is not None
        self.assertEqual(summary.id, "g-1")
        self.assertEqual(summary.cwd, "/home/u/app")
        self.assertEqual(summary.dirKey, "/home/u/app")
        self.assertEqual(summary.projectHash, path.parent.parent.name)
        self.assertEqual(summary.title, "Run the tests in /home/u/app please")

        details = gemini_parser.parse_details(str(path))
        assert details is not None
        self.assertEqual(details.messageCount, 2)

    def test_cwd_dropped_when_hash_disagrees(self) -> None:
        root = self._tmp()
        path = self._session(root, "/home/u/other", self._payload())

        self.assertIsNone(gemini_parser.extract_cwd(str(path)))
        summary = gemini_parser.parse_summary(str(path))
        assert summary is not None
        self.assertIsNone(summary.cwd)
        self.assertEqual(summary.projectHash, path.parent.parent.name)

    def test_discovery_only_visits_hash_directories(self) -> None:
        root = self._tmp()
        path = self._session(root, "/home/u/app", self._payload())
        (root / "notes").mkdir()
        (root / "notes" / "session-1.json").write_text("{}", encoding="utf-8")

        self.assertEqual(gemini_parser.discover_session_files(str(root)), [str(path)])

    def test_deeply_nested_file_is_unparseable_not_fatal(self) -> None:
        root = self._tmp()
        path = root / ("b" * 64) / "chats" / "session-1.json"
        path.parent.mkdir(parents=True)
        path.write_text("[" * 200_000 + "]" * 200_000, encoding="utf-8")

        self.assertIsNone(gemini_parser.extract_cwd(str(path)))
        registry.parse_summary("gemini", str(path))
        registry.parse_details("gemini", str(path))


class RegistryTests(_TmpMixin, unittest.TestCase):
    def test_provider_for_file(self) -> None:
        self.assertEqual(registry.provider_for_file("/h/.gemini/tmp/abc/session-1.json"), "gemini")
        self.assertEqual(registry.provider_for_file("/h/.claude/projects/p/s.jsonl"), "claude")
        self.assertEqual(registry.provider_for_file(r"C:\h\x\s.ndjson"), "claude")
        self.assertEqual(registry.provider_for_file("/h/.codex/sessions/r.jsonl"), "codex")
        self.assertIsNone(registry.provider_for_file("/h/readme.md"))

    def test_unknown_provider_raises(self) -> None:
        with self.assertRaises(KeyError):
            registry.get_parser("cursor")

    def test_unreadable_file_yields_none(self) -> None:
        missing = str(self._tmp() / "missing.jsonl")
        self.assertIsNone(registry.parse_summary("codex", missing))
        self.assertIsNone(registry.parse_details("claude", missing))

    def test_parser_recursion_error_yields_none(self) -> None:
        def explode(file_path):
            raise RecursionError("maximum recursion depth exceeded")

        with patch.object(codex_parser, "parse_summary", explode), patch.object(codex_parser, "parse_details", explode):
            self.assertIsNone(registry.parse_summary("codex", "/s/r.jsonl"))
            self.assertIsNone(registry.parse_details("codex", "/s/r.jsonl"))


if __name__ == "__main__":
    unittest.main()
