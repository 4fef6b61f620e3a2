"""
Interaction state for the port list.

The Session is only ever touched from the interaction loop. Discovery and
termination run on background threads that report a single result message
into ``Session.results``; ``pump()`` applies those messages one at a time.
"""
import queue
import threading
import time
from collections import namedtuple
from enum import Enum

from .config import debug_log
from .terminate import terminate

PortsLoaded = namedtuple("PortsLoaded", ["generation", "records", "error"])
KillResult = namedtuple("KillResult", ["record", "error"])


class State(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    CONFIRMING = "confirming"
    ERROR = "error"


class Confirmation:
    __slots__ = ("target", "pending")

    def __init__(self, target):
        self.target = target
        self.pending = False


class Notice:
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"

    __slots__ = ("message", "kind", "expires")

    def __init__(self, message, kind, expires):
        self.message = message
        self.kind = kind
        self.expires = expires


def spawn_thread(fn, *args):
    threading.Thread(target=fn, args=args, daemon=True).start()


def matches_filter(record, filters):
    if not filters:
        return True
    if filters.get("port") and record.port != int(filters["port"]):
        return False
    if filters.get("pid") and record.pid != int(filters["pid"]):
        return False
    if filters.get("user") and record.user != filters["user"]:
        return False
    return True


def matches_query(record, query):
    return not query or query.lower() in record.filter_value.lower()


class Session:
    def __init__(self, provider, terminator=terminate, timeout=2.0, spawn=spawn_thread,
                 filters=None, status_duration=3.0, clock=time.time):
        self.provider = provider
        self.terminator = terminator
        self.timeout = timeout
        self.filters = filters or {}
        self.status_duration = status_duration
        self.results = queue.Queue()

        self.state = State.IDLE
        self.records = []
        self.selected = 0
        self.error = ""
        self.status = ""
        self.notice = None
        self.confirm = None
        self.query = ""
        self.searching = False

        self._spawn = spawn
        self._clock = clock
        self._generation = 0
        self._cancel = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def visible(self):
        return [r for r in self.records
                if matches_filter(r, self.filters) and matches_query(r, self.query)]

    def selected_record(self):
        rows = self.visible()
        if 0 <= self.selected < len(rows):
            return rows[self.selected]
        return None

    @property
    def loading(self):
        return self._cancel is not None

    @property
    def kill_pending(self):
        return self.confirm is not None and self.confirm.pending

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------
    def start(self):
        self._begin_discovery("Loading active ports...")

    def refresh(self):
        """Re-run discovery; accepted from READY or ERROR only."""
        if self.state not in (State.READY, State.ERROR):
            return False
        self._begin_discovery("Refreshing...")
        return True

    def move(self, delta):
        rows = self.visible()
        if not rows:
            self.selected = 0
            return
        self.selected = max(0, min(len(rows) - 1, self.selected + delta))

    def request_kill(self, record=None):
        if self.state not in (State.READY, State.ERROR):
            return False
        record = record or self.selected_record()
        if record is None:
            return False
        self.confirm = Confirmation(record)
        self.state = State.CONFIRMING
        self.status = f"Target locked: {record.label}"
        return True

    def confirm_kill(self):
        """Dispatch the pending kill; a repeat while one is in flight is ignored."""
        if self.state != State.CONFIRMING or self.confirm.pending:
            return False
        self.confirm.pending = True
        target = self.confirm.target
        self._notify(f"Sending SIGTERM to PID {target.pid}...", Notice.INFO)
        debug_log(f"SESSION: Kill requested for {target.label} on {target.protocol}/{target.port}")
        self._spawn(self._run_kill, target)
        return True

    def cancel_kill(self):
        if self.state != State.CONFIRMING or self.confirm.pending:
            return False
        self.confirm = None
        self.error = ""
        self.status = ""
        self.state = State.READY
        return True

    def dismiss_error(self):
        if self.state != State.ERROR:
            return False
        self.error = ""
        self.state = State.READY
        return True

    def start_search(self):
        if self.state == State.CONFIRMING:
            return False
        self.searching = True
        return True

    def set_query(self, query):
        self.query = query
        self.selected = 0

    def finish_search(self):
        """Stop typing but keep the current query applied."""
        self.searching = False

    def clear_search(self):
        self.searching = False
        if self.query:
            self.set_query("")

    def tick(self, now=None):
        now = self._clock() if now is None else now
        if self.notice is not None and now >= self.notice.expires:
            self.notice = None

    # ------------------------------------------------------------------
    # Result messages
    # ------------------------------------------------------------------
    def pump(self):
        """Apply every result message queued by background work."""
        handled = 0
        while True:
            try:
                msg = self.results.get_nowait()
            except queue.Empty:
                return handled
            self.handle(msg)
            handled += 1

    def handle(self, msg):
        if isinstance(msg, PortsLoaded):
            self._on_ports_loaded(msg)
        elif isinstance(msg, KillResult):
            self._on_kill_result(msg)
        else:
            raise TypeError(f"unexpected message {msg!r}")

    def _on_ports_loaded(self, msg):
        if msg.generation != self._generation:
            debug_log(f"SESSION: Dropping stale discovery result (gen {msg.generation})")
            return
        self._cancel = None
        if msg.error is not None:
            self.error = f"error loading ports: {msg.error}"
            self.status = ""
            self.state = State.ERROR
            return
        self.records = list(msg.records)
        self.error = ""
        self._clamp_selection()
        self.status = f"Loaded {len(self.records)} ports @ {time.strftime('%H:%M', time.localtime(self._clock()))}"
        self.state = State.READY

    def _on_kill_result(self, msg):
        self.confirm = None
        record = msg.record
        if msg.error is not None:
            self._notify(f"Failed to terminate {record.label}", Notice.ERROR)
            self.error = f"termination failed: {msg.error}"
            self.state = State.ERROR
            return
        self.remove_record(record)
        self._notify(f"Terminated {record.label}", Notice.SUCCESS)
        self._begin_discovery("Refreshing port list...")

    def remove_record(self, record):
        for idx, existing in enumerate(self.records):
            if existing.matches(record):
                del self.records[idx]
                self._clamp_selection()
                return True
        return False

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------
    def _begin_discovery(self, status):
        if self._cancel is not None:
            self._cancel.set()
        self._generation += 1
        self._cancel = threading.Event()
        self.status = status
        self.state = State.LOADING
        self._spawn(self._run_discovery, self._generation, self._cancel)

    def _run_discovery(self, generation, cancel):
        try:
            records = self.provider.list_ports(self.timeout, cancel)
        except Exception as e:
            debug_log(f"SESSION: Discovery failed: {e}")
            self.results.put(PortsLoaded(generation, None, e))
            return
        self.results.put(PortsLoaded(generation, records, None))

    def _run_kill(self, record):
        try:
            self.terminator(record.pid)
        except Exception as e:
            debug_log(f"SESSION: Kill of PID {record.pid} failed: {e}")
            self.results.put(KillResult(record, e))
            return
        self.results.put(KillResult(record, None))

    def _notify(self, message, kind):
        self.notice = Notice(message, kind, self._clock() + self.status_duration)

    def _clamp_selection(self):
        count = len(self.visible())
        if self.selected >= count:
            self.selected = max(0, count - 1)
