import logging
import sys
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from sweet.core.logging import LoggingConfig, SecretScrubberFilter, setup_logging


class SecretScrubberFilterTests(unittest.TestCase):
    def test_masks_credentials_in_rendered_message(self) -> None:
        record = logging.LogRecord("sweet", logging.INFO, __file__, 1, "login user=%s pass=%s", ("backup", "pw"), None)

        SecretScrubberFilter().filter(record)

        self.assertEqual("login user=backup pass=***", record.getMessage())


class LoggingConfigTests(unittest.TestCase):
    def test_section_values_and_defaults(self) -> None:
        config = LoggingConfig.from_section({"level": "debug", "syslog": "yes"})

        self.assertEqual(logging.DEBUG, config.level)
        self.assertEqual(Path("/var/log/sweet"), config.directory)
        self.assertFalse(config.syslog)


class SetupLoggingTests(unittest.TestCase):
    def tearDown(self) -> None:
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

    def test_writes_device_field_to_configured_file(self) -> None:
        with TemporaryDirectory() as tmpdir:
            local = Path(tmpdir) / "local.yml"
            local.write_text(f"logging:\n  directory: {tmpdir}\n  filename: run.log\n", encoding="utf-8")

            logger = setup_logging(local, cli_level=logging.DEBUG)
            logger.debug("collector output pass=hunter2", extra={"device": "r1"})
            logger.info("round finished")

            text = (Path(tmpdir) / "run.log").read_text(encoding="utf-8")

        self.assertIn("DEBUG | device=r1 | collector output pass=***", text)
        self.assertIn("device=- | round finished", text)


if __name__ == "__main__":
    unittest.main()
