"""
Artwork loading for sources that report a URL instead of image bytes.

Handles file:// paths, plain paths, spotify:image: URIs and http(s) URLs.
Blocking; call from an executor.
"""
import time
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import requests

from ..config import VERSION
from ..logging_config import get_logger

logger = get_logger(__name__)

HEADERS = {
    'User-Agent': f'MediaSessionBridge/{VERSION}'
}

MAX_ARTWORK_BYTES = 20 * 1024 * 1024


def load_artwork(url: Optional[str], timeout: float = 5.0, retries: int = 2) -> Optional[bytes]:
    """Return the artwork bytes, or None when missing or unreachable."""
    if not url:
        return None
    url = url.strip()

    if url.startswith('spotify:image:'):
        url = f"https://i.scdn.co/image/{url.replace('spotify:image:', '')}"

    parsed = urlparse(url)
    if parsed.scheme in ('', 'file'):
        path = Path(unquote(parsed.path) if parsed.scheme == 'file' else url)
        try:
            return path.read_bytes()
        except OSError as e:
            logger.debug(f"Artwork file unreadable ({path}): {e}")
            return None

    if parsed.scheme not in ('http', 'https'):
        logger.debug(f"Unsupported artwork URL scheme: {parsed.scheme}")
        return None

    for attempt in range(retries):
        try:
            response = requests.get(url, timeout=timeout, headers=HEADERS)
            response.raise_for_status()
            if len(response.content) > MAX_ARTWORK_BYTES:
                logger.debug(f"Artwork too large ({len(response.content)} bytes): {url}")
                return None
            return response.content
        except requests.exceptions.HTTPError as e:
            # Only server-side and rate-limit errors are worth another try
            if e.response is not None and e.response.status_code in (429, 500, 502, 503, 504) and attempt < retries - 1:
                time.sleep(0.1 * (2 ** attempt))
                continue
            logger.debug(f"Artwork download failed for {url}: {e}")
            return None
        except requests.exceptions.RequestException as e:
            if attempt < retries - 1:
                time.sleep(0.1 * (2 ** attempt))
                continue
            logger.debug(f"Artwork download failed for {url}: {e}")
            return None
    return None
