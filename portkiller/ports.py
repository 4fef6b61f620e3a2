import os
import signal
import subprocess
import threading
import time

from .config import CONFIG, debug_log, use_mock_requested
from .errors import DiscoveryCancelled, DiscoveryTimeout, LaunchError, UtilityError
from .lsof import parse_lsof_output
from .models import PortRecord, sort_records

LSOF_ARGS = ["-nP", "-iTCP", "-sTCP:LISTEN", "-iUDP", "-FpcfLnuPT"]
# How often a running lsof is checked for cancellation.
POLL_INTERVAL = 0.05
# Upper bound on waiting for a killed lsof to exit.
REAP_TIMEOUT = 1.0


class PortProvider:
    """Enumerates network ports on the local system."""

    name = "base"

    def list_ports(self, timeout, cancel=None):
        """
        Return a sorted list of PortRecord.

        `timeout` bounds the call in seconds; setting the optional
        threading.Event `cancel` makes the call return promptly with
        DiscoveryCancelled.
        """
        raise NotImplementedError


class LsofProvider(PortProvider):
    name = "lsof"

    def __init__(self, path=None):
        self.path = path or "lsof"

    def command(self):
        return [self.path] + LSOF_ARGS

    def list_ports(self, timeout, cancel=None):
        cmd = self.command()
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                start_new_session=True,
            )
        except OSError as e:
            debug_log(f"LSOF: Launch failed for {self.path}: {e}")
            raise LaunchError(self.path, e) from e

        deadline = time.monotonic() + timeout
        while True:
            if cancel is not None and cancel.is_set():
                self._reap(proc)
                raise DiscoveryCancelled()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._reap(proc)
                debug_log(f"LSOF: Timed out after {timeout}s")
                raise DiscoveryTimeout(timeout)
            try:
                stdout, stderr = proc.communicate(timeout=min(remaining, POLL_INTERVAL))
                break
            except subprocess.TimeoutExpired:
                continue

        if proc.returncode != 0:
            debug_log(f"LSOF: Exit {proc.returncode}, Err: {stderr.strip()}")
            raise UtilityError(self.path, proc.returncode, stderr)

        records = parse_lsof_output(stdout)
        debug_log(f"LSOF: Parsed {len(records)} ports")
        return records

    @staticmethod
    def _reap(proc):
        """Kill lsof and every helper in its session without waiting on the pipes."""
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except OSError as e:
            debug_log(f"LSOF: killpg({proc.pid}) failed: {e}")
            proc.kill()
        for stream in (proc.stdout, proc.stderr):
            if stream is not None:
                stream.close()
        try:
            proc.wait(timeout=REAP_TIMEOUT)
        except subprocess.TimeoutExpired:
            # stuck in the kernel; collect it once it finally exits
            debug_log(f"LSOF: PID {proc.pid} did not exit after SIGKILL")
            threading.Thread(target=proc.wait, daemon=True).start()


MOCK_PORTS = [
    PortRecord(pid=4521, process="node", user="naveed", protocol="tcp", port=3000, address="0.0.0.0", state="LISTEN"),
    PortRecord(pid=9112, process="postgres", user="postgres", protocol="tcp", port=5432, address="127.0.0.1", state="LISTEN"),
    PortRecord(pid=2048, process="redis-server", user="redis", protocol="tcp", port=6379, address="127.0.0.1", state="LISTEN"),
    PortRecord(pid=7320, process="python", user="naveed", protocol="tcp", port=8000, address="127.0.0.1", state="LISTEN"),
    PortRecord(pid=8871, process="nginx", user="root", protocol="tcp", port=443, address="0.0.0.0", state="LISTEN"),
    PortRecord(pid=612, process="avahi-daemon", user="avahi", protocol="udp", port=5353, address="*", state=""),
]


class MockProvider(PortProvider):
    """Serves a fixed set of ports after a short delay, for offline use."""

    name = "mock"

    def __init__(self, delay=0.12, records=None):
        self.delay = delay
        self.records = list(MOCK_PORTS if records is None else records)

    def list_ports(self, timeout, cancel=None):
        cancel = cancel or threading.Event()
        wait = min(self.delay, timeout)
        if cancel.wait(max(wait, 0)):
            raise DiscoveryCancelled()
        if timeout < self.delay:
            raise DiscoveryTimeout(timeout)
        return sort_records(self.records)


def get_provider(use_mock=False, lsof_path=None):
    if use_mock_requested(use_mock):
        debug_log("SESSION: Using mock port provider")
        return MockProvider(delay=CONFIG.get("mock_delay", 0.12))
    return LsofProvider(lsof_path or CONFIG.get("lsof_path"))
