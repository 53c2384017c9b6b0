import threading
import unittest

from interceptor.navigation import (
    COMPLETE,
    LOADING,
    NavigationDecision,
    NavigationDispatcher,
    NavigationEvent,
    TabRegistry,
    decide_navigation,
)
from interceptor.policy import RedirectRule, RedirectSpec
from interceptor.resolver import inline_html_data_url
from interceptor.wildcard import compile_rules


class TestTabRegistry(unittest.TestCase):

    def test_only_new_loading_urls_produce_events(self):
        tabs = TabRegistry()

        ev = tabs.observe(1, "https://a.example/", LOADING)
        self.assertEqual(ev, NavigationEvent(tab_id=1, url="https://a.example/", status=LOADING))
        self.assertIsNone(tabs.observe(1, "https://a.example/", LOADING))
        self.assertIsNone(tabs.observe(1, "https://b.example/", COMPLETE))
        self.assertIsNone(tabs.observe(1, "", LOADING))
        self.assertIsNotNone(tabs.observe(2, "https://a.example/", LOADING))

    def test_override_becomes_current_url(self):
        tabs = TabRegistry()
        tabs.observe(5, "https://a.example/", LOADING)
        tabs.set_url(5, "data:text/html;charset=utf-8,x")

        # The redirect's own load must not be handled again.
        self.assertIsNone(tabs.observe(5, "data:text/html;charset=utf-8,x", LOADING))

        self.assertIsNotNone(tabs.observe(5, "https://a.example/", LOADING))


def test_dispatcher_runs_handler_and_returns_decision():
    def handler(event):
        return NavigationDecision(url=event.url, redirect="https://r.example/")

    d = NavigationDispatcher(handler, max_workers=2)
    try:
        out = d.submit(NavigationEvent(1, "https://a.example/")).result(timeout=5)
    finally:
        d.shutdown()
    assert out.redirect == "https://r.example/"


def test_dispatcher_handler_failure_lets_navigation_proceed():
    def handler(event):
        raise RuntimeError("boom")

    d = NavigationDispatcher(handler, max_workers=1)
    try:
        out = d.submit(NavigationEvent(1, "https://a.example/")).result(timeout=5)
    finally:
        d.shutdown()
    assert out == NavigationDecision(url="https://a.example/")


def test_dispatcher_resolves_events_independently():
    gate = threading.Event()

    def handler(event):
        if event.tab_id == 1:
            gate.wait(5)
        return NavigationDecision(url=event.url)

    d = NavigationDispatcher(handler, max_workers=2)
    try:
        slow = d.submit(NavigationEvent(1, "https://slow.example/"))
        fast = d.submit(NavigationEvent(2, "https://fast.example/"))
        assert fast.result(timeout=5).url == "https://fast.example/"
        assert not slow.done()
        gate.set()
        assert slow.result(timeout=5).url == "https://slow.example/"
    finally:
        gate.set()
        d.shutdown()


class _NoLiveTargets:
    def check(self, url):
        return False


def _redirects(*pairs):
    return compile_rules(
        [RedirectRule(pattern=p, own=RedirectSpec(inline_html=html, declared=True), default=RedirectSpec()) for p, html in pairs]
    )


def test_decide_navigation_block_wins_over_redirect():
    out = decide_navigation(
        "https://a.example/x",
        is_blocked=lambda url: True,
        redirects=_redirects(("*", "<p>r</p>")),
        probe=_NoLiveTargets(),
    )
    assert out == NavigationDecision(url="https://a.example/x", blocked=True)


def test_decide_navigation_first_resolvable_match_wins():
    out = decide_navigation(
        "https://a.example/x",
        is_blocked=lambda url: False,
        redirects=_redirects(("https://a.example/*", ""), ("*", "<p>second</p>"), ("https://a.example/x", "<p>third</p>")),
        probe=_NoLiveTargets(),
    )
    assert out.redirect == inline_html_data_url("<p>second</p>")
    assert out.matched_pattern == "*"


def test_decide_navigation_no_match_proceeds():
    out = decide_navigation(
        "https://b.example/",
        is_blocked=lambda url: False,
        redirects=_redirects(("https://a.example/*", "<p>r</p>")),
        probe=_NoLiveTargets(),
    )
    assert out == NavigationDecision(url="https://b.example/")
