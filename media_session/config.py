"""
Media Session Bridge Configuration Loader
Loads values from environment, .env and settings.json via the settings manager.
"""
import os
import sys
from pathlib import Path
from dotenv import load_dotenv

from .settings import settings

# ==========================================
# Path Configuration
# ==========================================
if "__compiled__" in globals() or getattr(sys, 'frozen', False):
    ROOT_DIR = Path(sys.executable).parent
else:
    ROOT_DIR = Path(__file__).parent.parent

# ==========================================
# Version
# ==========================================
VERSION = "1.0.0"

env_file = ROOT_DIR / '.env'
if env_file.exists():
    load_dotenv(env_file)

# Helper to prefer Env Var > Settings JSON > Default
def conf(key, default=None):
    # 1. Check Env Var (Highest Priority - good for dev and CI)
    env_val = os.getenv(key.upper().replace('.', '_'))
    if env_val is not None:
        definition = settings.definition(key)
        if definition is not None:
            return definition.validate_and_convert(env_val)
        return env_val

    # 2. Check Settings JSON
    json_val = settings.get(key)
    if json_val is not None:
        return json_val

    # 3. Default
    return default

# ==========================================
# EXPORTED CONFIG DICTS
# ==========================================

BIN_DIR = ROOT_DIR / "bin"
HELPER_NAME = "MediaHelper"

DEBUG = {
    "log_file": conf("debug.log_file", "media_bridge.log"),
    "log_level": conf("debug.log_level", "INFO"),
    "log_to_console": conf("debug.log_to_console", True),
    "log_rotation": {
        "max_bytes": conf("debug.log_rotation.max_bytes", 1048576),
        "backup_count": conf("debug.log_rotation.backup_count", 5)
    }
}

HELPER = {
    "debounce_ms": conf("helper.debounce_ms", 100),
    "poll_interval": conf("helper.poll_interval", 2.0),
    "thumbnail_size": conf("helper.thumbnail_size", 144),
    "source": conf("helper.source", "auto"),
    "artwork_timeout": conf("helper.artwork_timeout", 5.0),
}

SUPERVISOR = {
    "helper_path": conf("supervisor.helper_path", ""),
    "restart_delay": conf("supervisor.restart_delay", 1.0),
    "restart_backoff": conf("supervisor.restart_backoff", 2.0),
    "max_restart_delay": conf("supervisor.max_restart_delay", 10.0),
    "max_failures": conf("supervisor.max_failures", 5),
    "kill_timeout": conf("supervisor.kill_timeout", 2.0),
}

# Helper functions
def get_helper_executable_name() -> str:
    if sys.platform == "win32":
        return f"{HELPER_NAME}.exe"
    return HELPER_NAME

def get_helper_path() -> Path:
    """Resolve the helper binary, honouring an explicit override."""
    override = SUPERVISOR["helper_path"]
    if override:
        return Path(override)
    return BIN_DIR / get_helper_executable_name()
