from __future__ import annotations

import logging
import urllib.error
import urllib.request
from typing import Optional, Protocol
from urllib.parse import quote, urlparse

from interceptor.errors import ProbeFailureError
from interceptor.policy import RedirectSpec


logger = logging.getLogger(__name__)


DATA_URL_PREFIX = "data:text/html;charset=utf-8,"

# Characters encodeURIComponent leaves untouched besides ASCII alphanumerics.
_URI_COMPONENT_SAFE = "-_.!~*'()"

_PROBE_HEADERS = {
    "User-Agent": "url-interceptor/probe",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


class Probe(Protocol):
    def check(self, url: str) -> bool: ...


def inline_html_data_url(html: str) -> str:
    return DATA_URL_PREFIX + quote(html, safe=_URI_COMPONENT_SAFE, encoding="utf-8")


class HeadProbe:
    """Header-only liveness check for remote redirect targets."""

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = float(timeout_seconds)

    def _head(self, url: str) -> int:
        u = urlparse(url or "")
        if u.scheme not in ("http", "https"):
            raise ProbeFailureError(f"Only http/https targets can be probed: {url!r}")
        req = urllib.request.Request(url, headers=dict(_PROBE_HEADERS), method="HEAD")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                return int(getattr(resp, "status", 0) or resp.getcode() or 0)
        except urllib.error.HTTPError as e:
            raise ProbeFailureError(f"HTTP {e.code} from {url}") from e
        except (urllib.error.URLError, OSError, ValueError) as e:
            # Timeouts surface as socket.timeout / TimeoutError, both OSError.
            raise ProbeFailureError(f"{type(e).__name__}: {e}") from e

    def check(self, url: str) -> bool:
        try:
            status = self._head(url)
        except ProbeFailureError as e:
            logger.warning("Probe failed for %s, falling back: %s", url, e)
            return False
        if 200 <= status < 300:
            return True
        logger.warning("Probe for %s returned status %s, falling back", url, status)
        return False


def _probe_ok(probe: Probe, url: str) -> bool:
    try:
        return bool(probe.check(url))
    except Exception:
        # A misbehaving probe counts as a dead target.
        logger.warning("Probe raised for %s, falling back", url, exc_info=True)
        return False


def resolve_target(own: RedirectSpec, fallback: RedirectSpec, probe: Probe) -> Optional[str]:
    """Pick the redirect destination for one matching navigation.

    Order, first success wins:
      1. own remote page, if it answers a HEAD probe
      2. own inline HTML, as a data URL
      3. document default remote page, if it answers a HEAD probe
      4. document default inline HTML, as a data URL
    Returns None when nothing applies, in which case the navigation proceeds.
    Nothing is cached: liveness can change between navigations.
    """
    if own.remote_html_url and _probe_ok(probe, own.remote_html_url):
        return own.remote_html_url
    if own.inline_html:
        return inline_html_data_url(own.inline_html)
    if fallback.remote_html_url and _probe_ok(probe, fallback.remote_html_url):
        return fallback.remote_html_url
    if fallback.inline_html:
        return inline_html_data_url(fallback.inline_html)
    return None
