from __future__ import annotations

import hashlib
import logging
import os
import secrets
from typing import Optional

from interceptor.errors import HashFailureError
from interceptor.logutil import log_exception_throttled


logger = logging.getLogger(__name__)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _digest_candidate(candidate: str) -> str:
    try:
        return sha256_hex(candidate)
    except Exception as e:
        raise HashFailureError(f"{type(e).__name__}: {e}") from e


def verify_secret(candidate: Optional[str], stored_digest_hex: Optional[str]) -> bool:
    """Check a password against the digest from the policy's `authn` field.

    Returns False when either side is missing. Hashing faults count as a
    failed check. Nothing persisted changes here; a successful check only
    lets the caller unlock its own session.
    """
    if not candidate or not stored_digest_hex:
        return False
    try:
        digest = _digest_candidate(candidate)
        return secrets.compare_digest(digest, stored_digest_hex)
    except (HashFailureError, TypeError):
        logger.exception("Error hashing password")
        return False


def get_or_create_secret_key(secret_path: str) -> str:
    """Return the Flask session secret, creating it on first use.

    Session unlocks live in the signed session cookie, so the key has to
    survive restarts.
    """
    secret_dir = os.path.dirname(secret_path)
    if secret_dir:
        os.makedirs(secret_dir, exist_ok=True)
    try:
        with open(secret_path, "r", encoding="utf-8") as f:
            val = f.read().strip()
            if val:
                return val
    except FileNotFoundError:
        pass

    secret = secrets.token_urlsafe(48)
    tmp_path = secret_path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        f.write(secret)
        f.write("\n")
    os.replace(tmp_path, secret_path)
    try:
        os.chmod(secret_path, 0o600)
    except OSError:
        log_exception_throttled(
            logger,
            "access_gate.secret_chmod",
            interval_seconds=300.0,
            message="Failed to chmod session secret key file",
        )
    return secret
