"""Exception hierarchy for discovery and termination failures."""


class PortKillerError(Exception):
    pass


# --------------------------------------------------
# Discovery
# --------------------------------------------------
class DiscoveryError(PortKillerError):
    pass


class LaunchError(DiscoveryError):
    """The discovery utility could not be started."""

    def __init__(self, path, cause):
        super().__init__(f"executing {path}: {cause}")
        self.path = path
        self.cause = cause


class UtilityError(DiscoveryError):
    """The discovery utility ran but reported failure."""

    def __init__(self, path, returncode, stderr=""):
        detail = stderr.strip().splitlines()[0] if stderr and stderr.strip() else ""
        msg = f"{path} failed: exit status {returncode}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)
        self.path = path
        self.returncode = returncode
        self.stderr = stderr


class ParseError(DiscoveryError):
    pass


class DiscoveryTimeout(DiscoveryError):
    def __init__(self, timeout):
        super().__init__(f"discovery timed out after {timeout:g}s")
        self.timeout = timeout


class DiscoveryCancelled(DiscoveryError):
    def __init__(self):
        super().__init__("discovery cancelled")


# --------------------------------------------------
# Termination
# --------------------------------------------------
class TerminationError(PortKillerError):
    pass


class SignalDeliveryError(TerminationError):
    def __init__(self, pid, signal_name, step, cause):
        super().__init__(f"failed to send {signal_name} to PID {pid} ({step}): {cause}")
        self.pid = pid
        self.signal_name = signal_name
        self.step = step
        self.cause = cause


class ProcessUnresponsiveError(TerminationError):
    def __init__(self, pid):
        super().__init__(f"process {pid} survived both SIGTERM and SIGKILL")
        self.pid = pid


class UnsupportedPlatformError(TerminationError):
    def __init__(self, platform_name):
        super().__init__(f"process termination is not supported on this platform ({platform_name})")
        self.platform_name = platform_name
