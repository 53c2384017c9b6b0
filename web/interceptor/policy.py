from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from interceptor.errors import InvalidEntryError, InvalidLockConfigError, MalformedDocumentError


logger = logging.getLogger(__name__)


LOCKED = "locked"
UNLOCKED = "unlocked"

_DIGEST_RE = re.compile(r"[0-9a-f]{64}", re.IGNORECASE)


@dataclass(frozen=True)
class RedirectSpec:
    inline_html: Optional[str] = None
    remote_html_url: Optional[str] = None
    # True when the source mapping carried an `html` or `htmlsrc` key at all.
    declared: bool = False

    @classmethod
    def from_mapping(cls, m: Any) -> "RedirectSpec":
        if not isinstance(m, Mapping):
            return cls()
        html = m.get("html")
        htmlsrc = m.get("htmlsrc")
        return cls(
            inline_html=html if isinstance(html, str) else None,
            remote_html_url=htmlsrc if isinstance(htmlsrc, str) else None,
            declared=("html" in m) or ("htmlsrc" in m),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "html": self.inline_html,
            "htmlsrc": self.remote_html_url,
            "declared": self.declared,
        }

    @classmethod
    def from_dict(cls, d: Any) -> "RedirectSpec":
        if not isinstance(d, Mapping):
            return cls()
        html = d.get("html")
        htmlsrc = d.get("htmlsrc")
        return cls(
            inline_html=html if isinstance(html, str) else None,
            remote_html_url=htmlsrc if isinstance(htmlsrc, str) else None,
            declared=bool(d.get("declared")),
        )


@dataclass(frozen=True)
class PolicyEntry:
    pattern: Optional[str]
    redirect: RedirectSpec = field(default_factory=RedirectSpec)


@dataclass(frozen=True)
class PolicyDocument:
    lock: bool = False
    authn_hash: Optional[str] = None
    default_redirect: RedirectSpec = field(default_factory=RedirectSpec)
    entries: Tuple[PolicyEntry, ...] = ()


@dataclass(frozen=True)
class BlockRule:
    id: int
    pattern: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "pattern": self.pattern}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "BlockRule":
        return cls(id=int(d["id"]), pattern=str(d["pattern"]))


@dataclass(frozen=True)
class RedirectRule:
    pattern: str
    own: RedirectSpec
    default: RedirectSpec

    def to_dict(self) -> Dict[str, Any]:
        return {"pattern": self.pattern, "own": self.own.to_dict(), "default": self.default.to_dict()}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "RedirectRule":
        return cls(
            pattern=str(d["pattern"]),
            own=RedirectSpec.from_dict(d.get("own")),
            default=RedirectSpec.from_dict(d.get("default")),
        )


@dataclass(frozen=True)
class AccessLock:
    status: str = UNLOCKED
    digest_hex: Optional[str] = None

    @property
    def locked(self) -> bool:
        return self.status == LOCKED and bool(self.digest_hex)


@dataclass(frozen=True)
class CompiledPolicy:
    block_rules: Tuple[BlockRule, ...]
    redirect_rules: Tuple[RedirectRule, ...]
    lock: AccessLock


def parse_policy(text: str) -> PolicyDocument:
    """Parse policy YAML into a PolicyDocument.

    Raises MalformedDocumentError for invalid YAML or a non-mapping top level.
    Shape problems below the top level are tolerated: a `urls` that is not a
    list has no entries, a `global` that is not a mapping declares nothing.
    """
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MalformedDocumentError(str(e)) from e
    if not isinstance(raw, dict):
        raise MalformedDocumentError("YAML content is not a valid object.")

    entries: List[PolicyEntry] = []
    urls = raw.get("urls")
    if isinstance(urls, list):
        for item in urls:
            if not isinstance(item, Mapping):
                entries.append(PolicyEntry(pattern=None))
                continue
            pat = item.get("url")
            entries.append(
                PolicyEntry(
                    pattern=pat if isinstance(pat, str) else None,
                    redirect=RedirectSpec.from_mapping(item),
                )
            )

    authn = raw.get("authn")
    return PolicyDocument(
        lock=raw.get("lock") is True,
        authn_hash=authn if isinstance(authn, str) else None,
        default_redirect=RedirectSpec.from_mapping(raw.get("global")),
        entries=tuple(entries),
    )


def _lock_digest(doc: PolicyDocument) -> str:
    digest = doc.authn_hash or ""
    if not _DIGEST_RE.fullmatch(digest):
        raise InvalidLockConfigError("lock requested without a 64-hex-digit authn digest")
    return digest.lower()


def _compile_lock(doc: PolicyDocument) -> AccessLock:
    if not doc.lock:
        return AccessLock()
    try:
        digest = _lock_digest(doc)
    except InvalidLockConfigError as e:
        logger.warning("Lock disabled: %s", e)
        return AccessLock()
    return AccessLock(status=LOCKED, digest_hex=digest)


def _entry_pattern(entry: PolicyEntry, idx: int) -> str:
    if entry.pattern is None:
        raise InvalidEntryError(f"entry #{idx} has no url pattern")
    return entry.pattern


def compile_policy(doc: PolicyDocument) -> CompiledPolicy:
    """Split a parsed document into block rules, redirect rules and the lock.

    An entry redirects when it declares its own target or the document
    declares a default one; otherwise it blocks. Block ids run 1..N in
    document order no matter how many redirects sit between them.
    """
    lock = _compile_lock(doc)

    block_rules: List[BlockRule] = []
    redirect_rules: List[RedirectRule] = []
    default_declared = doc.default_redirect.declared

    for idx, entry in enumerate(doc.entries):
        try:
            pattern = _entry_pattern(entry, idx)
        except InvalidEntryError as e:
            logger.debug("Skipping policy entry: %s", e)
            continue

        if entry.redirect.declared or default_declared:
            redirect_rules.append(RedirectRule(pattern=pattern, own=entry.redirect, default=doc.default_redirect))
        else:
            block_rules.append(BlockRule(id=len(block_rules) + 1, pattern=pattern))

    return CompiledPolicy(
        block_rules=tuple(block_rules),
        redirect_rules=tuple(redirect_rules),
        lock=lock,
    )


def compile_policy_text(text: str) -> CompiledPolicy:
    return compile_policy(parse_policy(text))
