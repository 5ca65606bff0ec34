"""
Session source registry.

Sources register by name; get_source() returns the requested one, or with
"auto" the first source that is available on this host.

Usage:
    from media_session.sources import get_source

    source = get_source("auto")
    if source is None:
        ...  # nothing usable on this platform
"""
from typing import Dict, List, Optional, Type

from ..logging_config import get_logger
from .base import BaseSessionSource, SourceCapability, SourceConfig, SourceError
from .linux import LinuxSessionSource
from .macos import MacOSSessionSource
from .windows import WindowsSessionSource

logger = get_logger(__name__)

# Registry of source classes, in "auto" preference order
_registry: Dict[str, Type[BaseSessionSource]] = {}


def register_source(cls: Type[BaseSessionSource]) -> Type[BaseSessionSource]:
    """Register a source class under its configured name."""
    config = cls.get_config()
    if not isinstance(config, SourceConfig):
        raise TypeError(f"{cls.__name__}.get_config() must return SourceConfig")
    _registry[config.name] = cls
    return cls


for _cls in (WindowsSessionSource, MacOSSessionSource, LinuxSessionSource):
    register_source(_cls)


def list_source_names() -> List[str]:
    return list(_registry)


def get_source(name: str = "auto") -> Optional[BaseSessionSource]:
    """
    Instantiate a source.

    Args:
        name: Registered source name, or "auto" for the first available one

    Returns:
        Source instance, or None if the source is unknown or unavailable here
    """
    if name == "auto":
        for source_name in _registry:
            source = get_source(source_name)
            if source is not None:
                return source
        return None

    cls = _registry.get(name)
    if cls is None:
        logger.warning(f"Unknown session source: {name} (known: {', '.join(_registry)})")
        return None

    try:
        source = cls()
    except Exception as e:
        logger.warning(f"Failed to create session source '{name}': {e}")
        return None

    if not source.is_available():
        logger.debug(f"Session source {name}: not available on this host")
        return None

    logger.info(f"Using session source: {cls.get_config().display_name}")
    return source


__all__ = [
    "BaseSessionSource",
    "SourceCapability",
    "SourceConfig",
    "SourceError",
    "get_source",
    "list_source_names",
    "register_source",
]
