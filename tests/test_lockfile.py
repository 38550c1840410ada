import json
import tempfile
import unittest
from pathlib import Path

from apicurio_sync.errors import LocalFileError, LockfileCorrupt
from apicurio_sync.lockfile import (
    LockEntry,
    Lockfile,
    content_fingerprint,
    load_lockfile,
    lockfile_path_for,
    save_lockfile,
)
from apicurio_sync.manifest import PULL, PUSH, ArtifactRef


class TestLockfilePersistence(unittest.TestCase):
    def test_missing_file_is_an_empty_lockfile(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            lockfile = load_lockfile(Path(td) / "apicurio-sync.lock")
        self.assertEqual(len(lockfile), 0)

    def test_save_orders_entries_and_loads_back(self) -> None:
        entries = [
            LockEntry(ArtifactRef("b", "z"), PULL, "3", "sha256:aa"),
            LockEntry(ArtifactRef("a", "y"), PUSH, "1", "sha256:bb"),
            LockEntry(ArtifactRef("a", "y"), PULL, "2"),
        ]
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "apicurio-sync.lock"
            save_lockfile(Lockfile(entries), path)
            raw = json.loads(path.read_text(encoding="utf-8"))
            loaded = load_lockfile(path)
            text = path.read_text(encoding="utf-8")
            save_lockfile(Lockfile(reversed(entries)), path)
            self.assertEqual(path.read_text(encoding="utf-8"), text)
            self.assertFalse(path.with_suffix(".lock.tmp").exists())

        self.assertEqual(
            [(e["group"], e["artifact_id"], e["direction"]) for e in raw["entries"]],
            [("a", "y", PULL), ("a", "y", PUSH), ("b", "z", PULL)],
        )
        self.assertNotIn("fingerprint", raw["entries"][0])
        self.assertEqual(loaded, Lockfile(entries))

    def test_failed_save_raises_local_file_error_and_leaves_no_tmp(self) -> None:
        lockfile = Lockfile([LockEntry(ArtifactRef("g", "a"), PULL, "1")])
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "apicurio-sync.lock"
            path.mkdir()
            with self.assertRaises(LocalFileError):
                save_lockfile(lockfile, path)
            self.assertFalse(path.with_suffix(".lock.tmp").exists())

            blocker = Path(td) / "blocker"
            blocker.write_bytes(b"")
            with self.assertRaises(LocalFileError):
                save_lockfile(lockfile, blocker / "apicurio-sync.lock")

    def test_invalid_json_is_corrupt(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "apicurio-sync.lock"
            path.write_text("{not json", encoding="utf-8")
            with self.assertRaises(LockfileCorrupt) as ctx:
                load_lockfile(path)
        self.assertIn("delete it", str(ctx.exception))

    def test_bad_entries_are_corrupt(self) -> None:
        bad_payloads = [
            [],
            {"entries": {}},
            {"entries": [{"group": "g", "artifact_id": "a", "direction": "sideways", "version": "1"}]},
            {"entries": [{"group": "g", "artifact_id": "a", "direction": "pull"}]},
            {
                "entries": [
                    {"group": "g", "artifact_id": "a", "direction": "pull", "version": "1"},
                    {"group": "g", "artifact_id": "a", "direction": "pull", "version": "2"},
                ]
            },
        ]
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "apicurio-sync.lock"
            for payload in bad_payloads:
                path.write_text(json.dumps(payload), encoding="utf-8")
                with self.subTest(payload=payload):
                    with self.assertRaises(LockfileCorrupt):
                        load_lockfile(path)


class TestLockfileModel(unittest.TestCase):
    def test_upsert_reports_changes(self) -> None:
        lockfile = Lockfile()
        entry = LockEntry(ArtifactRef("g", "a"), PULL, "1", content_fingerprint(b"x"))
        self.assertTrue(lockfile.upsert(entry))
        self.assertFalse(lockfile.upsert(entry))
        self.assertTrue(lockfile.upsert(LockEntry(ArtifactRef("g", "a"), PULL, "2")))
        self.assertEqual(len(lockfile), 1)
        self.assertEqual(lockfile.get(ArtifactRef("g", "a"), PULL).version, "2")
        self.assertIsNone(lockfile.get(ArtifactRef("g", "a"), PUSH))

    def test_retain_drops_undeclared_entries(self) -> None:
        keep = LockEntry(ArtifactRef("g", "a"), PULL, "1")
        drop = LockEntry(ArtifactRef("g", "a"), PUSH, "1")
        lockfile = Lockfile([keep, drop])
        removed = lockfile.retain({keep.key})
        self.assertEqual(removed, [drop])
        self.assertEqual(lockfile.entries(), [keep])

    def test_lock_path_sits_next_to_manifest(self) -> None:
        self.assertEqual(lockfile_path_for(Path("proj/apicurio-sync.yaml")), Path("proj/apicurio-sync.lock"))


if __name__ == "__main__":
    unittest.main()
