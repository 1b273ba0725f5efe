"""Content-Encoding decoding for buffered upstream responses.

Decoding never raises: a corrupt stream or an unknown encoding yields the
original bytes so the classifier can still look at the payload.
"""
import gzip
import logging
import zlib
from typing import Optional

import brotli

logger = logging.getLogger(__name__)


def _inflate(payload: bytes) -> bytes:
    # zlib-wrapped first, then raw deflate as some servers send
    try:
        return zlib.decompress(payload)
    except zlib.error:
        return zlib.decompress(payload, -zlib.MAX_WBITS)


DECODERS = {
    "gzip": gzip.decompress,
    "x-gzip": gzip.decompress,
    "deflate": _inflate,
    "br": brotli.decompress,
}


def decode(payload: bytes, content_encoding: Optional[str] = None) -> bytes:
    """
    Undo the Content-Encoding of a response body.

    Args:
        payload: raw body bytes as received from the upstream.
        content_encoding: value of the Content-Encoding header, if any. A
            comma-separated list is undone in reverse order.

    Returns:
        The decoded bytes, or `payload` unchanged when decoding fails.
    """
    if not content_encoding:
        return payload
    encodings = [e.strip().lower() for e in content_encoding.split(",") if e.strip()]
    data = payload
    for encoding in reversed(encodings):
        if encoding == "identity":
            continue
        decoder = DECODERS.get(encoding)
        if decoder is None:
            logger.warning("Unsupported content-encoding %r, passing body through raw", encoding)
            return payload
        try:
            data = decoder(data)
        except (OSError, EOFError, zlib.error, brotli.error) as exc:
            logger.warning("Failed to decode %s body (%s), passing body through raw", encoding, exc)
            return payload
    return data
