from __future__ import annotations

import logging
import urllib.error
import urllib.request
from urllib.parse import urlparse

from interceptor.errors import SourceUnavailableError


logger = logging.getLogger(__name__)


_FETCH_HEADERS = {
    "User-Agent": "url-interceptor/policy-fetch",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


def fetch_text(url: str, *, timeout_seconds: float = 25.0, max_bytes: int = 2 * 1024 * 1024) -> str:
    """Download the policy document and return it as text.

    Raises SourceUnavailableError for anything that is not a complete 2xx
    response within the size limit. An empty 2xx body returns "".
    """
    u = urlparse(url or "")
    if u.scheme not in ("http", "https"):
        raise SourceUnavailableError("Only http/https URLs are supported.")

    if max_bytes <= 0:
        max_bytes = 2 * 1024 * 1024

    req = urllib.request.Request(url, headers=dict(_FETCH_HEADERS), method="GET")
    try:
        with urllib.request.urlopen(req, timeout=timeout_seconds) as resp:
            status = int(getattr(resp, "status", 0) or resp.getcode() or 0)
            if not (200 <= status < 300):
                raise SourceUnavailableError(f"HTTP error! status: {status}")

            cl = resp.headers.get("Content-Length")
            try:
                if cl is not None and int(cl) > max_bytes:
                    raise SourceUnavailableError(f"Policy too large (Content-Length={cl}).")
            except ValueError:
                logger.debug("Ignoring unparsable Content-Length %r from %s", cl, url)

            total = 0
            chunks: list[bytes] = []
            while True:
                chunk = resp.read(64 * 1024)
                if not chunk:
                    break
                total += len(chunk)
                if total > max_bytes:
                    raise SourceUnavailableError(f"Policy exceeded limit ({max_bytes} bytes).")
                chunks.append(chunk)
            charset = resp.headers.get_content_charset() or "utf-8"
    except urllib.error.HTTPError as e:
        raise SourceUnavailableError(f"HTTP error! status: {e.code}") from e
    except urllib.error.URLError as e:
        raise SourceUnavailableError(f"Failed to fetch: {e.reason}") from e
    except (OSError, ValueError) as e:
        raise SourceUnavailableError(f"Failed to fetch: {type(e).__name__}") from e

    data = b"".join(chunks)
    try:
        return data.decode(charset, errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")
