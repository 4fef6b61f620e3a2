import os
import time

import yaml

CONFIG_DIR = os.path.expanduser("~/.config/portkiller")
CONFIG_PATH = os.path.join(CONFIG_DIR, "config.yaml")
DEBUG_LOG_PATH = os.path.join(CONFIG_DIR, "debug.log")

MOCK_ENV_VAR = "PORTKILLER_USE_MOCK"

DEFAULT_CONFIG = {
    "lsof_path": "lsof",
    "discovery_timeout": 2.0,
    "mock_delay": 0.12,
    "status_duration": 3.0,
    "use_mock": False,
}
CONFIG = dict(DEFAULT_CONFIG)


def debug_log(msg):
    """Write a timestamped message to the debug log."""
    try:
        os.makedirs(os.path.dirname(DEBUG_LOG_PATH), exist_ok=True)
        with open(DEBUG_LOG_PATH, "a") as f:
            f.write(f"[{time.strftime('%Y-%m-%d %H:%M:%S')}] {msg}\n")
    except OSError:
        pass


def init_config(path=None):
    """Overlay CONFIG with the user's config file, creating it on first run."""
    path = path or CONFIG_PATH
    if not os.path.exists(path):
        save_config(path)
        return CONFIG
    try:
        with open(path, "r") as f:
            saved = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        debug_log(f"CONFIG: Error loading {path}: {e}")
        return CONFIG
    if not isinstance(saved, dict):
        debug_log(f"CONFIG: Ignoring {path}, expected a mapping")
        return CONFIG
    for key, value in saved.items():
        if key not in DEFAULT_CONFIG:
            debug_log(f"CONFIG: Unknown key '{key}' ignored")
            continue
        try:
            CONFIG[key] = coerce_value(key, value)
        except (TypeError, ValueError) as e:
            CONFIG[key] = DEFAULT_CONFIG[key]
            debug_log(f"CONFIG: Bad value for '{key}' ({e}), using {DEFAULT_CONFIG[key]!r}")
    return CONFIG


def coerce_value(key, value):
    """Convert `value` to the type of the default for `key`."""
    default = DEFAULT_CONFIG[key]
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise TypeError(f"expected true/false, got {value!r}")
        return value
    if isinstance(default, float):
        if isinstance(value, bool):
            raise TypeError(f"expected a number, got {value!r}")
        value = float(value)
        if not value > 0:
            raise ValueError(f"expected a positive number, got {value!r}")
        return value
    if not isinstance(value, str) or not value.strip():
        raise TypeError(f"expected a non-empty string, got {value!r}")
    return value


def save_config(path=None):
    path = path or CONFIG_PATH
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(CONFIG, f, default_flow_style=False)
    except OSError as e:
        debug_log(f"CONFIG: Error saving: {e}")


def use_mock_requested(flag=False):
    """Resolve the mock toggle: CLI flag, then environment, then config."""
    if flag:
        return True
    if os.environ.get(MOCK_ENV_VAR) == "1":
        return True
    return bool(CONFIG.get("use_mock"))
