"""
Media Session Bridge Settings Manager
Handles typed configuration backed by settings.json
"""

import json
import shutil
import os
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass
from .logging_config import get_logger

logger = get_logger(__name__)

if "__compiled__" in globals() or getattr(sys, 'frozen', False):
    ROOT_DIR = Path(sys.executable).parent
else:
    ROOT_DIR = Path(__file__).parent.parent

SETTINGS_FILE = Path(os.getenv("MEDIA_BRIDGE_SETTINGS_FILE", str(ROOT_DIR / "settings.json")))

@dataclass
class Setting:
    """Represents a single configurable setting"""
    name: str
    type: type
    default: Any
    options: Optional[list] = None  # Allowed values
    min_val: Optional[float] = None
    max_val: Optional[float] = None

    def validate_and_convert(self, value: Any) -> Any:
        """Coerce value to the setting's type. Invalid or out-of-range values give the default."""
        try:
            if self.type == bool and isinstance(value, str):
                return value.strip().lower() in ('true', '1', 'yes', 'on')

            converted = self.type(value)
        except (ValueError, TypeError):
            logger.warning(f"{self.name}: cannot use {value!r}, keeping {self.default!r}")
            return self.default

        if self.options is not None and converted not in self.options:
            logger.warning(f"{self.name}: {converted!r} is not one of {self.options}")
            return self.default
        if (self.min_val is not None and converted < self.min_val) or \
                (self.max_val is not None and converted > self.max_val):
            logger.warning(f"{self.name}: {converted!r} out of range, keeping {self.default!r}")
            return self.default
        return converted


class SettingsManager:
    def __init__(self, path: Optional[Path] = None):
        self._path = Path(path) if path else SETTINGS_FILE
        self._settings: Dict[str, Any] = {}

        self._definitions = {
            # Debug
            "debug.log_file": Setting("Log File", str, "media_bridge.log"),
            "debug.log_level": Setting("Log Level", str, "WARNING" if getattr(sys, 'frozen', False) else "INFO", options=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
            "debug.log_to_console": Setting("Log to Console", bool, True),
            "debug.log_rotation.max_bytes": Setting("Max Log Size", int, 1048576, min_val=1024),
            "debug.log_rotation.backup_count": Setting("Log Backups", int, 5, min_val=0),

            # Helper process
            "helper.debounce_ms": Setting("Debounce", int, 100, min_val=0, max_val=5000),  # ms
            "helper.poll_interval": Setting("Poll Interval", float, 2.0, min_val=0.0, max_val=60.0),  # 0 disables
            "helper.thumbnail_size": Setting("Thumbnail Size", int, 144, min_val=2, max_val=1024),
            "helper.source": Setting("Session Source", str, "auto"),
            "helper.artwork_timeout": Setting("Artwork Timeout", float, 5.0, min_val=0.5, max_val=60.0),

            # Supervisor (consumer side)
            "supervisor.helper_path": Setting("Helper Path", str, ""),  # empty = bin/MediaHelper
            "supervisor.restart_delay": Setting("Restart Delay", float, 1.0, min_val=0.0),
            "supervisor.restart_backoff": Setting("Restart Backoff", float, 2.0, min_val=1.0),
            "supervisor.max_restart_delay": Setting("Max Restart Delay", float, 10.0, min_val=0.0),
            "supervisor.max_failures": Setting("Max Failures", int, 5, min_val=1),
            "supervisor.kill_timeout": Setting("Kill Timeout", float, 2.0, min_val=0.0),
        }

        self.load_settings()

    def load_settings(self) -> None:
        """Load settings from JSON, fall back to defaults"""
        self._settings = {}

        # 1. Load defaults first
        for key, definition in self._definitions.items():
            self._settings[key] = definition.default

        # 2. Load from JSON if exists
        if not self._path.exists():
            logger.debug(f"No settings file at {self._path}, using defaults")
            return

        try:
            with open(self._path, 'r', encoding='utf-8') as f:
                saved = json.load(f)
            if not isinstance(saved, dict):
                raise ValueError("settings root must be an object")
            for key, val in saved.items():
                if key in self._definitions:
                    self._settings[key] = self._definitions[key].validate_and_convert(val)
                else:
                    # Unknown keys are kept as-is
                    self._settings[key] = val
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load {self._path.name}: {e} - resetting to defaults")
            backup_path = self._path.with_suffix('.json.corrupted')
            try:
                shutil.copy2(self._path, backup_path)
                logger.info(f"Backed up corrupted settings to {backup_path}")
            except OSError as copy_error:
                logger.warning(f"Could not back up corrupted settings: {copy_error}")
            self.save_to_config()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value.
        Priority:
        1. Loaded value (from JSON or Schema Default)
        2. Schema Default (if key in definitions but not in settings dict yet)
        3. Provided 'default' argument (if key unknown)
        """
        if key in self._settings:
            return self._settings[key]

        if key in self._definitions:
            return self._definitions[key].default

        return default

    def definition(self, key: str) -> Optional[Setting]:
        return self._definitions.get(key)

    def save_to_config(self) -> None:
        """Save current memory settings to JSON file"""
        # Unique temp name so concurrent writers never share a temp file
        temp_path = self._path.parent / f"{self._path.stem}_{uuid.uuid4().hex}.json.tmp"
        try:
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(self._settings, f, indent=4, sort_keys=True)
            os.replace(temp_path, self._path)
        except OSError as e:
            logger.error(f"Failed to save settings: {e}")
            if temp_path.exists():
                try:
                    os.remove(temp_path)
                except OSError:
                    logger.debug(f"Could not remove {temp_path}")

settings = SettingsManager()
