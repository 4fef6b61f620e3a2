"""
Parser for lsof field output (``-F`` mode).

Each line starts with a one-character field tag followed by the value. A
``p`` line opens a process set and the ``c``/``L``/``u`` lines that follow
describe it; every ``f`` line then opens a file-descriptor set that inherits
that process context until the next ``p`` line.
"""
from .errors import ParseError
from .models import PortRecord, WILDCARD_ADDRESS, sort_records

STATE_PREFIX = "ST="


class ProcessContext:
    __slots__ = ("pid", "command", "user")

    def __init__(self, pid=0):
        self.pid = pid
        self.command = ""
        self.user = ""

    def set_user(self, value):
        # L (login) and u (uid) both report the owner; keep the first one seen.
        if value and not self.user:
            self.user = value


class _Entry:
    """Mutable descriptor record, frozen into a PortRecord on flush."""
    __slots__ = ("pid", "process", "user", "protocol", "port", "address", "state")

    def __init__(self, proc):
        self.pid = proc.pid
        self.process = proc.command
        self.user = proc.user
        self.protocol = ""
        self.port = 0
        self.address = ""
        self.state = ""


def split_host_port(addr):
    """
    Split an lsof name value into (host, port) strings.

    ``*:3000`` -> ("*", "3000"), ``[::1]:80`` -> ("::1", "80"),
    ``:8080`` -> ("*", "8080"). Connected sockets report ``local->remote``;
    only the local side is used. The port is "" when none is present.
    """
    if not addr:
        return "", ""
    if "->" in addr:
        addr = addr.split("->", 1)[0]

    if addr.startswith("["):
        idx = addr.rfind("]:")
        if idx != -1:
            return addr[1:idx], addr[idx + 2:]
        return addr.strip("[]"), ""

    idx = addr.rfind(":")
    if idx != -1:
        host = addr[:idx] or WILDCARD_ADDRESS
        return host, addr[idx + 1:]
    return addr, ""


def _parse_port(value):
    try:
        port = int(value)
    except ValueError:
        return None
    if 0 < port <= 65535:
        return port
    return None


def parse_lsof_output(out):
    """
    Convert raw ``lsof -F`` output into a sorted, de-duplicated list of
    PortRecord. Raises ParseError on a malformed process id; a malformed
    port only drops the affected descriptor.
    """
    records = []
    seen = set()
    proc = ProcessContext()
    entry = None

    def flush():
        if entry is None or entry.port == 0:
            return
        record = PortRecord(
            pid=entry.pid,
            process=entry.process or proc.command,
            user=entry.user or proc.user,
            protocol=entry.protocol,
            port=entry.port,
            address=entry.address,
            state=entry.state,
        )
        if record.key in seen:
            return
        seen.add(record.key)
        records.append(record)

    for line in out.split("\n"):
        if line.endswith("\r"):
            line = line[:-1]
        if not line:
            continue
        tag, value = line[0], line[1:]

        if tag == "p":
            flush()
            entry = None
            try:
                pid = int(value)
            except ValueError:
                raise ParseError(f"parse pid {value!r}: not an integer") from None
            proc = ProcessContext(pid)
        elif tag == "c":
            proc.command = value
        elif tag in ("L", "u"):
            proc.set_user(value)
        elif tag == "f":
            flush()
            entry = _Entry(proc)
        elif entry is None:
            continue
        elif tag == "P":
            entry.protocol = value.lower()
        elif tag == "n":
            host, port = split_host_port(value)
            entry.address = host
            port = _parse_port(port)
            if port is not None:
                entry.port = port
        elif tag == "T":
            if value.startswith(STATE_PREFIX):
                entry.state = value[len(STATE_PREFIX):]

    flush()
    return sort_records(records)
