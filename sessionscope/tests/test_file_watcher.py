import unittest
from pathlib import Path

from watchfiles import Change

from sessionscope.file_watcher import FileWatcher, classify_changes


class _NoRootsIndexer:
    watch_paths: list[str] = []

    def apply_changes(self, changes):
        raise AssertionError("nothing should be applied")


class ClassifyChangesTests(unittest.TestCase):
    def test_only_session_files_are_kept(self) -> None:
        changes = {
            (Change.added, "/s/2025/01/10/a.jsonl"),
            (Change.deleted, "/g/tmp/abc/chats/session-1.json"),
            (Change.modified, "/c/projects/p/b.NDJSON"),
            (Change.modified, "/s/notes.txt"),
        }
        self.assertEqual(
            classify_changes(changes),
            [
                ("modified", Path("/c/projects/p/b.NDJSON")),
                ("deleted", Path("/g/tmp/abc/chats/session-1.json")),
                ("modified", Path("/s/2025/01/10/a.jsonl")),
            ],
        )

    def test_empty_batch(self) -> None:
        self.assertEqual(classify_changes(set()), [])


class FileWatcherLifecycleTests(unittest.IsolatedAsyncioTestCase):
    async def test_watcher_without_paths_stops_itself(self) -> None:
        watcher = FileWatcher()
        await watcher.start(_NoRootsIndexer())
        await watcher._task
        self.assertFalse(watcher.is_running)
        await watcher.stop()
        self.assertIsNone(watcher._task)

    async def test_second_start_is_ignored(self) -> None:
        watcher = FileWatcher()
        await watcher.start(_NoRootsIndexer())
        first_task = watcher._task
        await watcher.start(_NoRootsIndexer())
        self.assertIs(watcher._task, first_task)
        await watcher.stop()


if __name__ == "__main__":
    unittest.main()
