import os
import signal
import sys
import time

import psutil

from .config import debug_log
from .errors import ProcessUnresponsiveError, SignalDeliveryError, UnsupportedPlatformError

TERM_GRACE = 0.5
KILL_GRACE = 0.2


def signals_supported():
    return hasattr(os, "kill") and hasattr(signal, "SIGKILL") and sys.platform != "win32"


def process_exists(pid):
    # psutil.pid_exists probes with signal 0 on POSIX.
    return psutil.pid_exists(pid)


def _send(pid, sig, step):
    try:
        os.kill(pid, sig)
    except OSError as e:
        debug_log(f"KILL: {step} failed for PID {pid}: {e}")
        raise SignalDeliveryError(pid, sig.name, step, e) from e


def terminate(pid, sleep=time.sleep):
    """
    Stop `pid`, escalating from SIGTERM to SIGKILL.

    SIGTERM, wait 500ms, probe; if still alive SIGKILL, wait 200ms, probe.
    Returns None once the process is gone. Raises SignalDeliveryError when
    a signal cannot be delivered, ProcessUnresponsiveError when the process
    outlives SIGKILL and UnsupportedPlatformError without POSIX signals.
    The waits are not interruptible.
    """
    if not signals_supported():
        raise UnsupportedPlatformError(sys.platform)

    debug_log(f"KILL: SIGTERM -> PID {pid}")
    _send(pid, signal.SIGTERM, "graceful termination")
    sleep(TERM_GRACE)
    if not process_exists(pid):
        debug_log(f"KILL: PID {pid} exited after SIGTERM")
        return

    debug_log(f"KILL: PID {pid} still alive, escalating to SIGKILL")
    _send(pid, signal.SIGKILL, "forceful termination")
    sleep(KILL_GRACE)
    if not process_exists(pid):
        debug_log(f"KILL: PID {pid} exited after SIGKILL")
        return

    debug_log(f"KILL: PID {pid} survived SIGKILL")
    raise ProcessUnresponsiveError(pid)
