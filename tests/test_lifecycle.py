#!/usr/bin/env python3
"""
Unit tests for FileLifecycleManager sweeps and scheduling.
"""

import asyncio
import os
import tempfile
import time
import unittest
from unittest.mock import patch

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from blobrelay.blob_store import BlobStore, BlobStoreError
from blobrelay.config import DEFAULT_MEDIA_KEY_PATTERN
from blobrelay.lifecycle import FileLifecycleManager
from blobrelay.state import RelayState


def url_for(name):
    return f"https://host/files/{name}"


class LifecycleTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        root = Path(self.tmp.name)
        self.store = BlobStore(root / "public", root / "archive", url_for=url_for)
        self.state = RelayState(DEFAULT_MEDIA_KEY_PATTERN)
        self.manager = FileLifecycleManager(
            self.store, self.state, url_for, interval=0.05, max_age=600, pending_ttl=None)

    async def asyncTearDown(self):
        await self.manager.stop()
        self.tmp.cleanup()

    def make_file(self, name, age_s):
        path = self.store.public_dir / name
        path.write_bytes(b"data")
        stamp = time.time() - age_s
        os.utime(path, (stamp, stamp))
        return path


class TestSweep(LifecycleTestCase):

    async def test_old_file_archived_and_mapping_invalidated(self):
        self.make_file("old.png", 1200)
        self.make_file("young.png", 30)
        self.state.media.put("blob:old", url_for("old.png"))
        self.state.media.put("blob:young", url_for("young.png"))

        report = await self.manager.sweep()

        self.assertEqual(report.archived, ["old.png"])
        self.assertEqual(report.invalidated_keys, ["blob:old"])
        self.assertEqual(report.kept, 1)
        self.assertTrue((self.store.archive_dir / "old.png").exists())
        self.assertFalse((self.store.public_dir / "old.png").exists())
        self.assertTrue((self.store.public_dir / "young.png").exists())
        self.assertIsNone(self.state.media.get("blob:old"))
        self.assertEqual(self.state.media.get("blob:young"), url_for("young.png"))

    async def test_sweep_with_nothing_eligible(self):
        self.make_file("young.png", 10)
        self.state.media.put("blob:young", url_for("young.png"))

        report = await self.manager.sweep()

        self.assertEqual(report.archived, [])
        self.assertEqual(report.failed, [])
        self.assertEqual(self.state.media.snapshot(), {"blob:young": url_for("young.png")})

    async def test_empty_public_area(self):
        report = await self.manager.sweep()
        self.assertEqual((report.archived, report.failed, report.kept), ([], [], 0))

    async def test_failed_move_is_skipped_not_fatal(self):
        self.make_file("a.png", 1200)
        self.make_file("b.png", 1200)
        self.state.media.put("blob:a", url_for("a.png"))
        self.state.media.put("blob:b", url_for("b.png"))
        real_archive = self.store.archive

        def flaky_archive(name):
            if name == "a.png":
                raise BlobStoreError("could not archive a.png: vanished")
            return real_archive(name)

        with patch.object(self.store, "archive", side_effect=flaky_archive):
            report = await self.manager.sweep()

        self.assertEqual(report.failed, ["a.png"])
        self.assertEqual(report.archived, ["b.png"])
        self.assertEqual(self.state.media.get("blob:a"), url_for("a.png"))
        self.assertIsNone(self.state.media.get("blob:b"))

    async def test_file_vanishing_before_stat_is_skipped(self):
        self.make_file("a.png", 1200)
        with patch.object(self.store, "age", side_effect=FileNotFoundError("a.png")):
            report = await self.manager.sweep()
        self.assertEqual(report.failed, ["a.png"])


class TestSchedule(LifecycleTestCase):

    async def test_run_once_swallows_top_level_failure(self):
        with patch.object(self.manager, "sweep", side_effect=RuntimeError("disk gone")):
            with self.assertLogs("blobrelay.lifecycle", level="ERROR"):
                self.assertIsNone(await self.manager.run_once())

    async def test_schedule_survives_failed_tick(self):
        calls = []
        real_sweep = self.manager.sweep

        async def sweep():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first tick fails")
            return await real_sweep()

        with patch.object(self.manager, "sweep", side_effect=sweep):
            self.manager.start()
            for _ in range(100):
                if len(calls) >= 3:
                    break
                await asyncio.sleep(0.02)
            await self.manager.stop()

        self.assertGreaterEqual(len(calls), 3)
        self.assertFalse(self.manager.running)

    async def test_startup_sweep_runs_immediately(self):
        self.make_file("old.png", 5000)
        self.manager.interval = 3600
        self.manager.start()
        for _ in range(50):
            if (self.store.archive_dir / "old.png").exists():
                break
            await asyncio.sleep(0.01)
        self.assertTrue((self.store.archive_dir / "old.png").exists())

    async def test_tick_evicts_pending_through_hub(self):
        class FakeHub:
            def __init__(self):
                self.ttls = []

            async def evict_expired(self, ttl):
                self.ttls.append(ttl)
                return []

        hub = FakeHub()
        self.manager.hub = hub
        self.manager.pending_ttl = 42.0

        await self.manager.run_once()

        self.assertEqual(hub.ttls, [42.0])


if __name__ == '__main__':
    unittest.main()
