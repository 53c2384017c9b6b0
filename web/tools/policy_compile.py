#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Dict, List, Optional


# Compiles a policy document offline and prints what the service would do with it:
# - lock status (digest is never printed)
# - block rules with their generation ids
# - redirect rules in evaluation order
# - optionally, the decision for one URL (--check-url)


class _NoProbe:
    """Treat every remote target as dead so resolution never leaves the host."""

    def check(self, url: str) -> bool:
        return False


def _read_source(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def _check_urls(compiled, urls: List[str], probe) -> List[Dict[str, Any]]:
    from interceptor.navigation import decide_navigation
    from interceptor.rule_store import build_block_matcher
    from interceptor.wildcard import compile_rules

    matcher = build_block_matcher({r.id: r.pattern for r in compiled.block_rules})
    redirects = compile_rules(compiled.redirect_rules)
    return [
        decide_navigation(u, is_blocked=matcher.should_block, redirects=redirects, probe=probe).to_dict()
        for u in urls
    ]


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Compile a URL interception policy and report the result")
    ap.add_argument("policy", help="Path to the YAML policy document, or - for stdin")
    ap.add_argument("--check-url", action="append", default=[], help="URL to evaluate (repeatable)")
    ap.add_argument("--no-probe", action="store_true", help="Skip HEAD probes; remote targets count as dead")
    ap.add_argument("--probe-timeout", type=float, default=5.0, help="HEAD probe timeout in seconds")
    ns = ap.parse_args(argv)

    # This script lives in web/tools; the interceptor package sits next to it in web/.
    here = os.path.abspath(os.path.dirname(__file__))
    app_root = os.path.abspath(os.path.join(here, ".."))
    if app_root not in sys.path:
        sys.path.insert(0, app_root)

    from interceptor.errors import MalformedDocumentError
    from interceptor.policy import compile_policy_text
    from interceptor.resolver import HeadProbe

    try:
        text = _read_source(str(ns.policy))
    except OSError as e:
        print(f"[policy_compile] failed to read {ns.policy}: {e}", file=sys.stderr)
        return 1

    try:
        compiled = compile_policy_text(text)
    except MalformedDocumentError as e:
        print(f"[policy_compile] invalid policy: {e}", file=sys.stderr)
        return 2

    probe = _NoProbe() if ns.no_probe else HeadProbe(timeout_seconds=ns.probe_timeout)
    report: Dict[str, Any] = {
        "lock_status": compiled.lock.status,
        "block_rules": [r.to_dict() for r in compiled.block_rules],
        "redirect_rules": [r.to_dict() for r in compiled.redirect_rules],
    }
    if ns.check_url:
        report["checks"] = _check_urls(compiled, list(ns.check_url), probe)

    json.dump(report, sys.stdout, indent=2, sort_keys=True)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
