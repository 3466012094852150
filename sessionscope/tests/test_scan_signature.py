import asyncio
import os
import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest.mock import patch

from sessionscope.models import Project, RootSignature, ScanMeta, SessionRootSignature
from sessionscope.scan_signature import (
    can_skip_rescan,
    compute_root_signature,
    compute_root_signatures,
    compute_session_root_signature,
    compute_session_root_signatures,
    is_timed_out,
    same_root_sigs,
    same_session_sigs,
    timed_out_root_signature,
    timed_out_session_signature,
)


class RootSignatureTests(unittest.TestCase):
    def _tmp(self) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        return Path(tmpdir.name)

    def test_counts_subdirectories_only(self) -> None:
        root = self._tmp()
        (root / "a").mkdir()
        (root / "b").mkdir()
        (root / "notes.txt").write_text("x", encoding="utf-8")

        sig = compute_root_signature(str(root))
        self.assertEqual(sig.entryCount, 2)
        self.assertGreater(sig.mtimeMs, 0)

    def test_missing_root_is_zeroed(self) -> None:
        sig = compute_root_signature(str(self._tmp() / "missing"))
        self.assertEqual(sig.entryCount, 0)
        self.assertEqual(sig.mtimeMs, 0)

    def test_signature_is_reflexive_and_detects_new_subdirectory(self) -> None:
        root = self._tmp()
        (root / "a").mkdir()
        before = asyncio.run(compute_root_signatures([str(root)]))
        self.assertTrue(same_root_sigs(before, asyncio.run(compute_root_signatures([str(root)]))))

        (root / "b").mkdir()
        after = asyncio.run(compute_root_signatures([str(root)]))
        self.assertFalse(same_root_sigs(before, after))

    def test_sub_millisecond_jitter_is_ignored(self) -> None:
        a = [RootSignature(root="r", entryCount=1, mtimeMs=1000.2)]
        self.assertTrue(same_root_sigs(a, [RootSignature(root="r", entryCount=1, mtimeMs=1000.9)]))
        self.assertFalse(same_root_sigs(a, [RootSignature(root="r", entryCount=1, mtimeMs=1001.0)]))

    def test_comparison_ignores_order(self) -> None:
        a = [RootSignature(root="x", entryCount=1), RootSignature(root="y", entryCount=2)]
        b = list(reversed(a))
        self.assertTrue(same_root_sigs(a, b))
        self.assertFalse(same_root_sigs(a, a[:1]))


class SessionSignatureTests(unittest.TestCase):
    def _tmp(self) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        return Path(tmpdir.name)

    def _touch(self, path: Path, mtime: float) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{}\n", encoding="utf-8")
        os.utime(path, (mtime, mtime))

    def test_newest_day_wins(self) -> None:
        root = self._tmp()
        self._touch(root / "2024" / "12" / "31" / "c.jsonl", 1_700_000_300)
        self._touch(root / "2025" / "01" / "05" / "a.jsonl", 1_700_000_200)
        self._touch(root / "2025" / "01" / "10" / "b.jsonl", 1_700_000_100)
        (root / "2025" / "01" / "11").mkdir()
        (root / "2025" / "01" / "11" / "notes.txt").write_text("x", encoding="utf-8")

        sig = compute_session_root_signature(str(root))
        self.assertTrue(sig.latestSessionFile.endswith("b.jsonl"))
        self.assertEqual(sig.latestSessionDir, str(root / "2025" / "01" / "10"))
        self.assertEqual(int(sig.mtimeMs), 1_700_000_100_000)

    def test_numeric_ordering_not_lexical(self) -> None:
        root = self._tmp()
        self._touch(root / "2025" / "9" / "1" / "old.jsonl", 1_700_000_000)
        self._touch(root / "2025" / "10" / "1" / "new.jsonl", 1_700_000_000)

        sig = compute_session_root_signature(str(root))
        self.assertTrue(sig.latestSessionFile.endswith("new.jsonl"))

    def test_empty_root_has_no_file(self) -> None:
        sig = compute_session_root_signature(str(self._tmp()))
        self.assertIsNone(sig.latestSessionFile)
        self.assertIsNone(sig.mtimeMs)

    def test_size_is_not_compared(self) -> None:
        a = [SessionRootSignature(root="r", latestSessionFile="f", mtimeMs=5.0, size=10)]
        b = [SessionRootSignature(root="r", latestSessionFile="f", mtimeMs=5.0, size=99)]
        self.assertTrue(same_session_sigs(a, b))
        c = [SessionRootSignature(root="r", latestSessionFile="g", mtimeMs=5.0, size=10)]
        self.assertFalse(same_session_sigs(a, c))


class CanSkipRescanTests(unittest.TestCase):
    def test_requires_previous_meta_and_stored_projects(self) -> None:
        meta = ScanMeta(roots=["r"], rootSigs=[RootSignature(root="r", entryCount=1, mtimeMs=1.0)])
        projects = [Project(id="P-1", name="app", wslPath="/home/u/app")]

        self.assertFalse(can_skip_rescan(None, projects, meta))
        self.assertFalse(can_skip_rescan(meta, [], meta))
        self.assertTrue(can_skip_rescan(meta, projects, meta.model_copy()))

    def test_changed_signature_forces_rescan(self) -> None:
        projects = [Project(id="P-1")]
        previous = ScanMeta(rootSigs=[RootSignature(root="r", entryCount=1)])
        fresh = ScanMeta(rootSigs=[RootSignature(root="r", entryCount=2)])
        self.assertFalse(can_skip_rescan(previous, projects, fresh))


class TimedOutSignatureTests(unittest.IsolatedAsyncioTestCase):
    def test_placeholder_never_matches(self) -> None:
        root_sig = timed_out_root_signature("/r")
        session_sig = timed_out_session_signature("/s")

        self.assertFalse(same_root_sigs([root_sig], [root_sig]))
        self.assertFalse(same_root_sigs([root_sig], [RootSignature(root="/r")]))
        self.assertFalse(same_session_sigs([session_sig], [session_sig]))
        self.assertFalse(same_session_sigs([SessionRootSignature(root="/s")], [session_sig]))
        self.assertFalse(is_timed_out(RootSignature(root="/r")))

    async def test_stalled_root_becomes_placeholder(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        stalled = os.path.join(tmpdir.name, "stalled")
        healthy = os.path.join(tmpdir.name, "healthy")
        os.makedirs(os.path.join(healthy, "a"))
        os.makedirs(stalled)
        release = threading.Event()
        self.addCleanup(release.set)
        original = compute_root_signature

        def stalling(root):
            if root == stalled:
                release.wait(5)
            return original(root)

        started = time.monotonic()
        with patch("sessionscope.scan_signature.compute_root_signature", stalling):
            sigs = await compute_root_signatures([stalled, healthy], timeout=0.1)
        self.assertLess(time.monotonic() - started, 1.5)

        by_root = {s.root: s for s in sigs}
        self.assertTrue(is_timed_out(by_root[stalled]))
        self.assertEqual(by_root[healthy].entryCount, 1)

        with patch("sessionscope.scan_signature.compute_session_root_signature", lambda root: release.wait(5)):
            [session_sig] = await compute_session_root_signatures([stalled], timeout=0.1)
        self.assertTrue(is_timed_out(session_sig))


if __name__ == "__main__":
    unittest.main()
