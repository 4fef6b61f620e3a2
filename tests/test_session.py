import os
import tempfile
import threading
import time
import unittest
from unittest.mock import MagicMock, patch

from portkiller.errors import LaunchError, ProcessUnresponsiveError
from portkiller.models import PortRecord
from portkiller.ports import MockProvider
from portkiller.session import KillResult, Notice, PortsLoaded, Session, State

NODE = PortRecord(4521, "node", "naveed", "tcp", 3000, "0.0.0.0", "LISTEN")
PG = PortRecord(9112, "postgres", "postgres", "tcp", 5432, "127.0.0.1", "LISTEN")
REDIS = PortRecord(2048, "redis-server", "redis", "tcp", 6379, "127.0.0.1", "LISTEN")


_tmp = None
_log_patch = None


def setUpModule():
    # keep debug_log output out of the real config directory
    global _tmp, _log_patch
    _tmp = tempfile.TemporaryDirectory()
    _log_patch = patch("portkiller.config.DEBUG_LOG_PATH", os.path.join(_tmp.name, "debug.log"))
    _log_patch.start()


def tearDownModule():
    _log_patch.stop()
    _tmp.cleanup()


class RecordingSpawn:
    """Collects background work instead of running it."""

    def __init__(self):
        self.calls = []

    def __call__(self, fn, *args):
        self.calls.append((fn, args))

    def run(self, index=-1):
        fn, args = self.calls[index]
        fn(*args)

    def names(self):
        return [fn.__name__ for fn, _ in self.calls]


class SessionTestCase(unittest.TestCase):
    def setUp(self):
        self.provider = MagicMock()
        self.provider.list_ports.return_value = [NODE, PG, REDIS]
        self.terminator = MagicMock(return_value=None)
        self.spawn = RecordingSpawn()
        self.session = Session(self.provider, terminator=self.terminator, spawn=self.spawn,
                               clock=lambda: 1000.0)

    def load(self):
        self.session.start()
        self.spawn.run()
        self.session.pump()
        self.assertEqual(self.session.state, State.READY)


class TestDiscovery(SessionTestCase):
    def test_start_enters_loading(self):
        self.assertEqual(self.session.state, State.IDLE)
        self.session.start()
        self.assertEqual(self.session.state, State.LOADING)
        self.assertTrue(self.session.loading)
        self.assertEqual(self.spawn.names(), ["_run_discovery"])

    def test_success_installs_list(self):
        self.load()
        self.assertEqual(self.session.records, [NODE, PG, REDIS])
        self.assertFalse(self.session.loading)
        self.assertIn("Loaded 3 ports", self.session.status)
        self.provider.list_ports.assert_called_once()
        self.assertEqual(self.provider.list_ports.call_args[0][0], 2.0)

    def test_success_replaces_list_wholesale(self):
        self.load()
        self.provider.list_ports.return_value = [REDIS]
        self.session.refresh()
        self.spawn.run()
        self.session.pump()
        self.assertEqual(self.session.records, [REDIS])

    def test_failure_keeps_previous_list(self):
        self.load()
        self.provider.list_ports.side_effect = LaunchError("lsof", "not found")
        self.assertTrue(self.session.refresh())
        self.spawn.run()
        self.session.pump()
        self.assertEqual(self.session.state, State.ERROR)
        self.assertEqual(self.session.records, [NODE, PG, REDIS])
        self.assertIn("error loading ports", self.session.error)

    def test_refresh_from_error(self):
        self.provider.list_ports.side_effect = LaunchError("lsof", "not found")
        self.session.start()
        self.spawn.run()
        self.session.pump()
        self.assertEqual(self.session.state, State.ERROR)
        self.provider.list_ports.side_effect = None
        self.assertTrue(self.session.refresh())
        self.spawn.run()
        self.session.pump()
        self.assertEqual(self.session.state, State.READY)
        self.assertEqual(self.session.error, "")

    def test_refresh_ignored_while_loading(self):
        self.session.start()
        self.assertFalse(self.session.refresh())
        self.assertEqual(len(self.spawn.calls), 1)

    def test_stale_result_dropped(self):
        self.session.start()
        _, first_args = self.spawn.calls[0]
        first_cancel = first_args[1]
        self.session.start()
        self.assertTrue(first_cancel.is_set())
        self.session.handle(PortsLoaded(2, [PG], None))
        self.session.handle(PortsLoaded(1, [NODE], None))
        self.assertEqual(self.session.records, [PG])
        self.assertEqual(self.session.state, State.READY)

    def test_dismiss_error(self):
        self.provider.list_ports.side_effect = LaunchError("lsof", "not found")
        self.session.start()
        self.spawn.run()
        self.session.pump()
        self.assertTrue(self.session.dismiss_error())
        self.assertEqual(self.session.state, State.READY)
        self.assertEqual(self.session.error, "")
        self.assertFalse(self.session.dismiss_error())

    def test_unknown_message(self):
        with self.assertRaises(TypeError):
            self.session.handle("bogus")


class TestKillFlow(SessionTestCase):
    def setUp(self):
        super().setUp()
        self.load()
        self.spawn.calls.clear()

    def test_request_kill_targets_selection(self):
        self.session.move(1)
        self.assertTrue(self.session.request_kill())
        self.assertEqual(self.session.state, State.CONFIRMING)
        self.assertIs(self.session.confirm.target, PG)
        self.assertFalse(self.session.confirm.pending)

    def test_cancel_returns_to_ready(self):
        self.session.request_kill()
        self.assertTrue(self.session.cancel_kill())
        self.assertEqual(self.session.state, State.READY)
        self.assertIsNone(self.session.confirm)
        self.assertEqual(self.session.records, [NODE, PG, REDIS])
        self.assertEqual(self.spawn.calls, [])

    def test_confirm_dispatches_once(self):
        self.session.request_kill()
        self.assertTrue(self.session.confirm_kill())
        self.assertTrue(self.session.kill_pending)
        self.assertFalse(self.session.confirm_kill())
        self.assertEqual(self.spawn.names(), ["_run_kill"])

    def test_cancel_ignored_while_pending(self):
        self.session.request_kill()
        self.session.confirm_kill()
        self.assertFalse(self.session.cancel_kill())
        self.assertEqual(self.session.state, State.CONFIRMING)

    def test_success_removes_and_refreshes_once(self):
        self.session.move(1)
        self.session.request_kill()
        self.session.confirm_kill()
        self.spawn.run()
        self.terminator.assert_called_once_with(PG.pid)
        self.session.pump()
        self.assertIsNone(self.session.confirm)
        self.assertEqual(self.session.records, [NODE, REDIS])
        self.assertEqual(self.session.state, State.LOADING)
        self.assertEqual(self.spawn.names(), ["_run_kill", "_run_discovery"])
        self.assertEqual(self.session.notice.kind, Notice.SUCCESS)

    def test_removal_ignores_protocol_case(self):
        upper = PortRecord(PG.pid, PG.process, PG.user, "TCP", PG.port, PG.address, PG.state)
        self.session.handle(KillResult(upper, None))
        self.assertEqual(self.session.records, [NODE, REDIS])

    def test_removal_requires_full_key(self):
        other = PortRecord(PG.pid, PG.process, PG.user, "tcp", PG.port, "::1", PG.state)
        self.assertFalse(self.session.remove_record(other))
        self.assertEqual(len(self.session.records), 3)

    def test_selection_clamped_after_removal(self):
        self.session.move(2)
        self.session.request_kill()
        self.session.confirm_kill()
        self.spawn.run()
        self.session.pump()
        self.assertEqual(self.session.selected, 1)

    def test_failure_keeps_record(self):
        self.terminator.side_effect = ProcessUnresponsiveError(NODE.pid)
        self.session.request_kill()
        self.session.confirm_kill()
        self.spawn.run()
        self.session.pump()
        self.assertIsNone(self.session.confirm)
        self.assertEqual(self.session.records, [NODE, PG, REDIS])
        self.assertEqual(self.session.state, State.ERROR)
        self.assertIn("survived", self.session.error)
        self.assertEqual(self.session.notice.kind, Notice.ERROR)
        self.assertEqual(self.spawn.names(), ["_run_kill"])

    def test_kill_not_accepted_while_loading(self):
        self.session.refresh()
        self.assertFalse(self.session.request_kill())

    def test_kill_on_empty_list(self):
        self.provider.list_ports.return_value = []
        self.session.refresh()
        self.spawn.run()
        self.session.pump()
        self.assertFalse(self.session.request_kill())


class TestNoticesAndFilters(unittest.TestCase):
    def test_notice_expires_on_tick(self):
        session = Session(MagicMock(), spawn=RecordingSpawn(), status_duration=3.0, clock=lambda: 100.0)
        session._notify("hello", Notice.INFO)
        session.tick(now=102.0)
        self.assertIsNotNone(session.notice)
        session.tick(now=103.5)
        self.assertIsNone(session.notice)

    def test_filters_narrow_visible_rows(self):
        session = Session(MagicMock(), spawn=RecordingSpawn(), filters={"user": "naveed"})
        session.records = [NODE, PG, REDIS]
        self.assertEqual(session.visible(), [NODE])
        session.filters = {"port": 6379}
        self.assertEqual(session.selected_record(), REDIS)


class TestSearch(SessionTestCase):
    def setUp(self):
        super().setUp()
        self.load()
        self.spawn.calls.clear()

    def test_query_narrows_visible_rows(self):
        self.session.start_search()
        self.session.set_query("POST")
        self.assertEqual(self.session.visible(), [PG])
        self.session.set_query("6379")
        self.assertEqual(self.session.visible(), [REDIS])
        self.session.set_query("naveed")
        self.assertEqual(self.session.visible(), [NODE])

    def test_query_resets_selection(self):
        self.session.move(2)
        self.session.set_query("e")
        self.assertEqual(self.session.selected, 0)

    def test_clear_restores_rows(self):
        self.session.start_search()
        self.session.set_query("nomatch")
        self.assertEqual(self.session.visible(), [])
        self.session.clear_search()
        self.assertFalse(self.session.searching)
        self.assertEqual(self.session.query, "")
        self.assertEqual(self.session.visible(), [NODE, PG, REDIS])

    def test_finish_keeps_query(self):
        self.session.start_search()
        self.session.set_query("redis")
        self.session.finish_search()
        self.assertFalse(self.session.searching)
        self.assertEqual(self.session.visible(), [REDIS])

    def test_search_refused_while_confirming(self):
        self.session.request_kill()
        self.assertFalse(self.session.start_search())
        self.assertFalse(self.session.searching)

    def test_kill_targets_filtered_row(self):
        self.session.set_query("redis")
        self.session.request_kill()
        self.assertIs(self.session.confirm.target, REDIS)

    def test_query_survives_refresh(self):
        self.session.set_query("node")
        self.session.refresh()
        self.spawn.run()
        self.session.pump()
        self.assertEqual(self.session.visible(), [NODE])


class TestThreadedSession(unittest.TestCase):
    def test_end_to_end_with_mock_provider(self):
        killed = threading.Event()

        def fake_terminate(pid):
            killed.set()

        session = Session(MockProvider(delay=0.2), terminator=fake_terminate, timeout=2.0)
        session.start()
        deadline = time.monotonic() + 5
        while session.state != State.READY and time.monotonic() < deadline:
            session.pump()
            time.sleep(0.01)
        self.assertEqual(session.state, State.READY)
        target = session.selected_record()

        session.request_kill()
        session.confirm_kill()
        while session.state == State.CONFIRMING and time.monotonic() < deadline:
            session.pump()
            time.sleep(0.01)
        self.assertTrue(killed.is_set())
        self.assertNotIn(target, session.records)
        self.assertEqual(session.state, State.LOADING)


if __name__ == "__main__":
    unittest.main()
