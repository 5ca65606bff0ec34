"""
Line-delimited JSON wire codec for MediaInfo.

One message is one UTF-8 line holding one JSON object. Field names are
case-sensitive and always written out in full.
"""
import json
from typing import Any, Dict

from .logging_config import get_logger
from .models import MediaInfo, PlaybackStatus, split_artists

logger = get_logger(__name__)

PART_COUNT = 4

_STRING_FIELDS = {
    "Title": "title",
    "Artist": "artist",
    "AlbumArtist": "album_artist",
    "AlbumTitle": "album_title",
    "CoverArtBase64": "cover_art",
}

PART_FIELDS = [f"CoverArtPart{i}Base64" for i in range(1, PART_COUNT + 1)]


class ParsingError(ValueError):
    """A wire line could not be decoded as a MediaInfo record."""


def to_wire(info: MediaInfo) -> Dict[str, Any]:
    parts = list(info.cover_art_parts) + [""] * PART_COUNT
    record = {
        "Title": info.title,
        "Artist": info.artist,
        "Artists": list(info.artists),
        "AlbumArtist": info.album_artist,
        "AlbumTitle": info.album_title,
        "Status": PlaybackStatus(info.status).value,
        "CoverArtBase64": info.cover_art,
    }
    for name, value in zip(PART_FIELDS, parts):
        record[name] = value
    return record


def encode_media_info(info: MediaInfo) -> str:
    """Serialize to a single newline-terminated line."""
    # json.dumps escapes control characters, so the payload never contains "\n"
    return json.dumps(to_wire(info), ensure_ascii=False, separators=(",", ":")) + "\n"


def _string_field(record: Dict[str, Any], name: str) -> str:
    value = record.get(name, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ParsingError(f"{name} must be a string, got {type(value).__name__}")
    return value


def from_wire(record: Any) -> MediaInfo:
    if not isinstance(record, dict):
        raise ParsingError(f"expected a JSON object, got {type(record).__name__}")

    info = MediaInfo()
    for wire_name, attr in _STRING_FIELDS.items():
        setattr(info, attr, _string_field(record, wire_name))

    if "Artists" in record and record["Artists"] is not None:
        artists = record["Artists"]
        if not isinstance(artists, list) or not all(isinstance(a, str) for a in artists):
            raise ParsingError("Artists must be a list of strings")
        info.artists = list(artists)
    else:
        info.artists = split_artists(info.artist)

    status = _string_field(record, "Status") or PlaybackStatus.STOPPED.value
    try:
        info.status = PlaybackStatus(status)
    except ValueError:
        raise ParsingError(f"unknown Status {status!r}") from None

    parts = [_string_field(record, name) for name in PART_FIELDS]
    # Parts come as a complete set next to the full cover, or not at all
    if not info.cover_art or not all(parts):
        if any(parts):
            logger.debug("Ignoring incomplete cover art parts")
        parts = [""] * PART_COUNT
    info.cover_art_parts = parts
    return info


def decode_media_info(line: str) -> MediaInfo:
    """Parse one wire line. Raises ParsingError on malformed input."""
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParsingError(f"invalid UTF-8: {e}") from e
    try:
        record = json.loads(line)
    except json.JSONDecodeError as e:
        raise ParsingError(f"invalid JSON: {e.msg} at position {e.pos}") from e
    except RecursionError as e:
        raise ParsingError("invalid JSON: nested too deeply") from e
    return from_wire(record)
