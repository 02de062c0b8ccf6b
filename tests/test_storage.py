import json
import logging
import shutil
import subprocess
import sys
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from sweet.common.run_summary import DeviceResultData, RoundSummaryBuilder
from sweet.core.errors import StorageError
from sweet.core.storage import ConfigStore, resolve_workspace

LOGGER = logging.getLogger("sweet.storage.test")


class ConfigStoreTests(unittest.TestCase):
    def test_reports_first_backup_then_changes(self) -> None:
        with TemporaryDirectory() as tmpdir:
            store = ConfigStore(Path(tmpdir), LOGGER)

            first = store.save("r1", "hostname r1\ninterface Gi0/1\n")
            same = store.save("r1", "hostname r1\ninterface Gi0/1\n")
            changed = store.save("r1", "hostname r1\ninterface Gi0/2\nntp server 10.0.0.5\n")

            self.assertTrue(first.first_backup)
            self.assertFalse(same.config_changed)
            self.assertTrue(changed.config_changed)
            self.assertEqual((2, 1), (changed.added, changed.removed))
            self.assertEqual(
                "hostname r1\ninterface Gi0/2\nntp server 10.0.0.5\n",
                (Path(tmpdir) / "r1").read_text(encoding="utf-8"),
            )
            self.assertEqual(["r1"], sorted(path.name for path in Path(tmpdir).iterdir()))

    def test_non_utf8_bytes_survive_save_and_compare(self) -> None:
        with TemporaryDirectory() as tmpdir:
            store = ConfigStore(Path(tmpdir), LOGGER)
            content = "banner motd Caf\udce9\n"

            first = store.save("r1", content)
            again = store.save("r1", content)

            self.assertTrue(first.first_backup)
            self.assertFalse(again.config_changed)
            self.assertEqual(b"banner motd Caf\xe9\n", (Path(tmpdir) / "r1").read_bytes())

    def test_rejects_hostnames_that_escape_the_workspace(self) -> None:
        with TemporaryDirectory() as tmpdir:
            store = ConfigStore(Path(tmpdir), LOGGER)
            for hostname in ("../r1", "..", ""):
                with self.subTest(hostname=hostname):
                    with self.assertRaises(StorageError):
                        store.save(hostname, "config")

    def test_unwritable_workspace_is_fatal(self) -> None:
        with TemporaryDirectory() as tmpdir:
            blocker = Path(tmpdir) / "file"
            blocker.write_text("", encoding="utf-8")
            store = ConfigStore(blocker / "workspace", LOGGER)

            with self.assertRaises(StorageError):
                store.save("r1", "config")

    @unittest.skipIf(shutil.which("git") is None, "requires git")
    def test_commit_only_when_something_changed(self) -> None:
        with TemporaryDirectory() as tmpdir:
            workspace = Path(tmpdir) / "workspace"
            store = ConfigStore(workspace, LOGGER)
            store.ensure_repository()

            store.save("r1", "hostname r1\n")
            self.assertTrue(store.commit())
            self.assertFalse(store.commit())

            log = subprocess.run(
                ["git", "log", "--format=%B", "-n", "1"], cwd=workspace, capture_output=True, text=True, check=True
            ).stdout
            self.assertTrue(log.startswith("Sweet commit:"))
            self.assertIn("r1", log)

    @unittest.skipIf(shutil.which("git") is None, "requires git")
    def test_push_failure_is_not_fatal(self) -> None:
        with TemporaryDirectory() as tmpdir:
            store = ConfigStore(Path(tmpdir), LOGGER)
            store.ensure_repository()
            store.save("r1", "hostname r1\n")

            self.assertTrue(store.commit(push=True))


class ResolveWorkspaceTests(unittest.TestCase):
    def test_cli_workspace_preferred(self) -> None:
        with TemporaryDirectory() as tmpdir:
            cli_dir = Path(tmpdir) / "cli"
            local_cfg = {"collection": {"workspace": str(Path(tmpdir) / "local")}}

            self.assertEqual(cli_dir, resolve_workspace(cli_dir, local_cfg, LOGGER))
            self.assertTrue(cli_dir.is_dir())

    def test_unwritable_workspace_raises(self) -> None:
        with TemporaryDirectory() as tmpdir:
            blocker = Path(tmpdir) / "file"
            blocker.write_text("", encoding="utf-8")

            with self.assertRaises(StorageError):
                resolve_workspace(blocker / "workspace", None, LOGGER)


class RoundSummaryTests(unittest.TestCase):
    def test_totals_and_json(self) -> None:
        builder = RoundSummaryBuilder(round_id="20261017_120000", timestamp="2026-10-17T12:00:00+00:00")
        builder.set_devices_total(3)
        builder.add_device(DeviceResultData("r1", "cisco", "success", "success", config_changed=True, lines_added=2))
        builder.add_device(DeviceResultData("r2", "junos", "failed", "Bad login password."))
        builder.add_device(DeviceResultData("r3", "cisco", "timeout", "Timeout collecting after 5 seconds."))

        self.assertEqual(
            "Finished with all 3 collectors: 1 succeeded, 2 failed (1 timed out), 1 changed.",
            builder.summary_line(),
        )

        with TemporaryDirectory() as tmpdir:
            target = builder.save(Path(tmpdir) / "status.json", LOGGER, {"r1": {"message": "success"}})
            data = json.loads(target.read_text(encoding="utf-8"))

        self.assertEqual(2, data["totals"]["devices_failed"])
        self.assertEqual(["r1", "r2", "r3"], [device["hostname"] for device in data["devices"]])
        self.assertEqual({"r1": {"message": "success"}}, data["status"])


if __name__ == "__main__":
    unittest.main()
