"""
Media Session Package - Facade

External code can use:
    from media_session import HelperProcess, MediaInfo, decode_media_info

The internal structure is:
    config.py     - conf() and the DEBUG/HELPER/SUPERVISOR dicts
    settings.py   - Typed settings backed by settings.json
    logging_config.py - setup_logging()/get_logger()
    models.py     - MediaInfo, PlaybackStatus, SessionMetadata
    codec.py      - Line-delimited JSON wire codec
    selector.py   - Session selection and selector memory
    thumbnail.py  - Cover art normalize/split/encode pipeline
    scheduler.py  - Debounced single-flight update scheduler
    helper.py     - The resident helper process
    sources/      - Per-OS session sources
"""

# --- Level 0: Data model and codec ---
from .models import (
    CoverArt,
    MediaInfo,
    PlaybackStatus,
    SessionMetadata,
    split_artists,
)
from .codec import (
    PART_FIELDS,
    ParsingError,
    decode_media_info,
    encode_media_info,
    from_wire,
    to_wire,
)

# --- Level 1: Pure pipeline stages ---
from .selector import SelectorMemory, SessionCandidate, SessionSelector, select_session
from .thumbnail import TARGET_SIZE, build_cover_art, decode_image, normalize, split
from .scheduler import UpdateScheduler

# --- Level 2: Helper process ---
from .helper import COMMANDS, HelperProcess, parse_command
