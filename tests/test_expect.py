import sys
import threading
import time
import unittest
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))
TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from fake_device import FakeSession
from sweet.core.errors import (
    AttemptCancelled,
    CaptureOverflowError,
    ConnectivityError,
    ExpectTimeout,
    SessionWriteError,
    StalledCaptureError,
)
from sweet.session.expect import Expect


def _feed_later(session: FakeSession, schedule: list[tuple[float, str]], close: bool = False) -> threading.Thread:
    def run() -> None:
        start = time.monotonic()
        for offset, chunk in schedule:
            delay = offset - (time.monotonic() - start)
            if delay > 0:
                time.sleep(delay)
            session.emit(chunk)
        if close:
            session.end()

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread


class AwaitLiteralTests(unittest.TestCase):
    def test_matches_pattern_split_across_chunks(self) -> None:
        session = FakeSession(greeting=["Last login\r\nPass", "wo", "rd: "])
        Expect(session, poll_interval=0.01).await_literal("assword:")

    def test_keeps_text_after_match_for_next_call(self) -> None:
        session = FakeSession(greeting=["Password:\r\nrouter#"])
        expect = Expect(session, poll_interval=0.01, wait_timeout=0.2)

        expect.await_literal("assword:")
        self.assertEqual("\r\nrouter#", expect.pending)
        expect.await_literal("#")
        self.assertEqual("", expect.pending)

    def test_consumed_text_is_not_matched_again(self) -> None:
        session = FakeSession(greeting=["Password:"])
        expect = Expect(session, poll_interval=0.01, wait_timeout=0.2)

        expect.await_literal("Password:")
        with self.assertRaises(ExpectTimeout):
            expect.await_literal("Password:")

    def test_stream_close_without_pattern_is_connectivity_error(self) -> None:
        session = FakeSession(greeting=["ssh: connect to host r1 port 22: Connection refused\r\n"])
        session.end()

        with self.assertRaises(ConnectivityError) as ctx:
            Expect(session, poll_interval=0.01).await_literal("assword:")
        self.assertIn("'assword:'", ctx.exception.reason)

    def test_closed_stream_reports_recorded_write_error(self) -> None:
        session = FakeSession()
        session.error = SessionWriteError("Session write failed: broken pipe", "r1")
        session.end()

        with self.assertRaises(SessionWriteError):
            Expect(session, poll_interval=0.01).await_literal("#")

    def test_wait_bound_raises_expect_timeout(self) -> None:
        session = FakeSession(greeting=["banner"])
        started = time.monotonic()

        with self.assertRaises(ExpectTimeout):
            Expect(session, poll_interval=0.05).await_literal("#", timeout=0.2)
        self.assertLess(time.monotonic() - started, 1.0)

    def test_cancel_event_aborts_wait(self) -> None:
        session = FakeSession()
        cancel = threading.Event()
        threading.Timer(0.1, cancel.set).start()

        with self.assertRaises(AttemptCancelled):
            Expect(session, cancel, poll_interval=0.02).await_literal("#")


class AwaitFirstOfTests(unittest.TestCase):
    def test_returns_first_candidate_to_appear(self) -> None:
        session = FakeSession()
        _feed_later(session, [(0.0, "Welcome\r\n"), (0.05, "router>")])

        matched = Expect(session, poll_interval=0.01, wait_timeout=1.0).await_first_of(["#", ">", "assword:"])
        self.assertEqual(">", matched)

    def test_ties_resolved_by_candidate_order(self) -> None:
        session = FakeSession(greeting=["router>\r\nPassword:"])

        matched = Expect(session, poll_interval=0.01).await_first_of(["assword:", "#", ">"])
        self.assertEqual("assword:", matched)

    def test_order_beats_buffer_position(self) -> None:
        session = FakeSession(greeting=["router>\r\nPassword:"])

        matched = Expect(session, poll_interval=0.01).await_first_of([">", "assword:"])
        self.assertEqual(">", matched)

    def test_requires_candidates(self) -> None:
        with self.assertRaises(ValueError):
            Expect(FakeSession()).await_first_of([])


class CaptureUntilQuietTests(unittest.TestCase):
    def test_returns_everything_after_idle_gap(self) -> None:
        session = FakeSession(greeting=["hostname r1\r\n"])
        _feed_later(session, [(0.1, "interface Gi0/1\r\n"), (0.2, "end\r\nr1#")])
        started = time.monotonic()

        text = Expect(session, poll_interval=0.05).capture_until_quiet(0.3)
        elapsed = time.monotonic() - started

        self.assertEqual("hostname r1\r\ninterface Gi0/1\r\nend\r\nr1#", text)
        self.assertGreaterEqual(elapsed, 0.45)
        self.assertLess(elapsed, 0.9)

    def test_includes_text_left_over_from_previous_match(self) -> None:
        session = FakeSession(greeting=["r1#show run\r\nhostname r1\r\n"])
        expect = Expect(session, poll_interval=0.01)

        expect.await_literal("#")
        self.assertEqual("show run\r\nhostname r1\r\n", expect.capture_until_quiet(0.1))

    def test_stream_close_is_an_error(self) -> None:
        session = FakeSession(greeting=["hostname r1\r\n"])
        _feed_later(session, [(0.05, "interface Gi0/1\r\n")], close=True)

        with self.assertRaises(ConnectivityError):
            Expect(session, poll_interval=0.01).capture_until_quiet(1.0)

    def test_ceiling_stops_endless_output(self) -> None:
        session = FakeSession()
        _feed_later(session, [(index * 0.05, f"line {index}\r\n") for index in range(40)])
        started = time.monotonic()

        with self.assertRaises(StalledCaptureError):
            Expect(session, poll_interval=0.02).capture_until_quiet(0.3, ceiling=0.5)
        self.assertLess(time.monotonic() - started, 1.2)

    def test_size_cap(self) -> None:
        session = FakeSession(greeting=["x" * 60, "y" * 60])

        with self.assertRaises(CaptureOverflowError):
            Expect(session, poll_interval=0.01, max_capture=100).capture_until_quiet(0.2)


if __name__ == "__main__":
    unittest.main()
