"""HMAC-signed, time-stamped download links.

A link is ``<path>?ts=<millis>[&v=<millis>]&sig=<hex>``. The signature
covers the decoded path and every query parameter except ``sig``,
serialized the same way on both sides. ``ts`` is the issue time and is
what a TTL is checked against; ``v`` pins the object version so that a
listing hands out a new link only when the object changed.
"""

import hashlib
import hmac
import logging
import time
from urllib.parse import parse_qsl, quote, unquote, urlencode

logger = logging.getLogger(__name__)

SIGNATURE_PARAM = "sig"
TIMESTAMP_PARAM = "ts"
VERSION_PARAM = "v"


def _millis(seconds: float) -> str:
    return str(int(seconds * 1000))


def canonical_string(path: str, params: list[tuple[str, str]]) -> str:
    """Build the string that gets signed.

    Args:
        path: Decoded request path.
        params: Query parameters in order; ``sig`` is dropped.

    Returns:
        The path, followed by ``?`` and the query when any remains.
    """
    query = urlencode([(k, v) for k, v in params if k != SIGNATURE_PARAM])
    return f"{path}?{query}" if query else path


class URLSigner:
    """Signs and verifies download paths with a shared secret.

    Attributes:
        ttl_seconds: Maximum link age; 0 disables the age check.
    """

    def __init__(self, key: str, ttl_seconds: int = 0) -> None:
        self._key = key.encode("utf-8")
        self.ttl_seconds = ttl_seconds

    def sign(self, path: str) -> str:
        """Hex HMAC-SHA256 of an already canonical path-with-query."""
        return hmac.new(self._key, path.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify(self, path: str, signature: str) -> bool:
        return hmac.compare_digest(self.sign(path), signature or "")

    def signed_path(
        self, path: str, now: float | None = None, version: float | None = None
    ) -> str:
        """Return ``path`` with ``ts``, optionally ``v``, and ``sig`` appended.

        Without a TTL a versioned link is issued at its version time, so
        the same object version always gets the same link.

        Args:
            path: Unencoded path, e.g. ``/download/photos/a b.jpg``.
            now: Issue time in seconds; defaults to the current time.
            version: Object version (last-modified) in seconds.
        """
        if now is None:
            now = version if version is not None and self.ttl_seconds <= 0 else time.time()
        params = [(TIMESTAMP_PARAM, _millis(now))]
        if version is not None:
            params.append((VERSION_PARAM, _millis(version)))
        signature = self.sign(canonical_string(path, params))
        return f"{quote(path, safe='/')}?{urlencode(params)}&{SIGNATURE_PARAM}={signature}"

    def verify_url(self, raw_path: str, query_string: str, now: float | None = None) -> bool:
        """Check a link as received.

        Args:
            raw_path: The path as sent, possibly percent-encoded.
            query_string: The raw query string, including ``sig``.
            now: Timestamp in seconds; defaults to the current time.

        Returns:
            True if the signature matches and the link is fresh enough.
        """
        params = parse_qsl(query_string, keep_blank_values=True)
        signature = next((v for k, v in params if k == SIGNATURE_PARAM), "")
        if not signature:
            return False
        path = unquote(raw_path)
        if not self.verify(canonical_string(path, params), signature):
            logger.info("Rejected download link with bad signature: %s", path)
            return False
        if self.ttl_seconds > 0:
            ts = next((v for k, v in params if k == TIMESTAMP_PARAM), "")
            try:
                issued = int(ts) / 1000
            except ValueError:
                return False
            current = time.time() if now is None else now
            if current - issued > self.ttl_seconds:
                return False
        return True
