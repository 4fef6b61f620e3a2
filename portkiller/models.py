from dataclasses import dataclass

WILDCARD_ADDRESS = "*"


@dataclass(frozen=True)
class PortRecord:
    """One socket binding owned by a process."""

    pid: int
    process: str
    user: str
    protocol: str
    port: int
    address: str
    state: str = ""

    @property
    def key(self):
        return (self.pid, self.protocol, self.port, self.address)

    def matches(self, other):
        """Compare composite keys, ignoring protocol case."""
        return (
            self.pid == other.pid
            and self.port == other.port
            and self.address == other.address
            and self.protocol.lower() == other.protocol.lower()
        )

    @property
    def label(self):
        return f"{self.process or '?'} ({self.pid})"

    @property
    def filter_value(self):
        """Text the interactive search matches against."""
        return f"{self.process} {self.port} {self.protocol} {self.user} {self.state}"


def sort_key(record):
    return (record.port, record.protocol, record.pid, record.address)


def sort_records(records):
    """Order by port, protocol, pid, then address."""
    return sorted(records, key=sort_key)
