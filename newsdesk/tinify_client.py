import logging

import tinify

from .config import get_settings

logger = logging.getLogger(__name__)


def is_enabled() -> bool:
    return bool(get_settings().TINIFY_API_KEY)


def compress(data: bytes) -> bytes:
    """Run already-encoded image bytes through TinyPNG, keeping their format.

    Returns the input untouched when no API key is configured or when the
    TinyPNG call fails, so the locally encoded file is always usable.
    """
    if not is_enabled():
        return data

    tinify.key = get_settings().TINIFY_API_KEY
    try:
        return tinify.from_buffer(data).to_buffer()
    except tinify.Error as e:
        logger.warning("TinyPNG compression failed, keeping local encoding: %s", e)
        return data
