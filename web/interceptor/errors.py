from __future__ import annotations

import os
import re


class InterceptorError(Exception):
    """Base class for conditions raised inside the interception core."""


class SourceUnavailableError(InterceptorError):
    """The policy source could not be fetched (network error or non-2xx)."""


class MalformedDocumentError(InterceptorError, ValueError):
    """The fetched text is not YAML, or its top level is not a mapping."""


class InvalidEntryError(InterceptorError, ValueError):
    """A policy entry lacks its pattern string. Skipped, never fatal."""


class InvalidLockConfigError(InterceptorError, ValueError):
    """Lock requested with a malformed digest. The lock is silently disabled."""


class InvalidPatternError(InterceptorError, ValueError):
    """A wildcard pattern could not be turned into a matcher."""


class ProbeFailureError(InterceptorError):
    """A remote redirect target did not answer a HEAD probe in time with 2xx."""


class HashFailureError(InterceptorError):
    """Digest computation failed while checking a password."""


def expose_internal_errors() -> bool:
    return (os.environ.get("EXPOSE_INTERNAL_ERRORS") or "").strip().lower() in (
        "1",
        "true",
        "yes",
        "on",
    )


def clean_text(text: str, *, max_len: int = 200) -> str:
    s = (text or "").replace("\r", " ").replace("\n", " ").strip()
    # Drop other control chars.
    s = "".join(ch if (ch >= " " and ch != "\x7f") else " " for ch in s)
    s = re.sub(r"\s+", " ", s).strip()
    if max_len and len(s) > max_len:
        s = s[: max_len - 3].rstrip() + "..."
    return s


def public_error_message(
    e: Exception,
    *,
    default: str = "Operation failed. Check server logs for details.",
    max_len: int = 200,
) -> str:
    """Return a message that is safe to persist as fetch telemetry.

    - Interceptor errors and ValueError carry messages we wrote ourselves, so
      they are returned as-is (cleaned and bounded).
    - Anything else is replaced by `default` unless EXPOSE_INTERNAL_ERRORS is
      set, in which case the exception type and message are returned.
    """
    if expose_internal_errors():
        detail = clean_text(f"{type(e).__name__}: {e}", max_len=max_len)
        return detail or default

    if isinstance(e, (InterceptorError, ValueError)):
        msg = clean_text(str(e), max_len=max_len)
        return msg or default

    return default
