import urllib.error

import pytest

from interceptor import resolver
from interceptor.policy import RedirectSpec
from interceptor.resolver import HeadProbe, inline_html_data_url, resolve_target


class FakeProbe:
    def __init__(self, alive=()):
        self.alive = set(alive)
        self.calls = []

    def check(self, url):
        self.calls.append(url)
        return url in self.alive


class ExplodingProbe:
    def check(self, url):
        raise RuntimeError("boom")


DEAD = "https://dead.example/page.html"
LIVE = "https://live.example/page.html"


def test_inline_html_is_percent_encoded_data_url():
    url = inline_html_data_url("<h1>X & Y</h1>")
    assert url == "data:text/html;charset=utf-8,%3Ch1%3EX%20%26%20Y%3C%2Fh1%3E"


def test_inline_html_keeps_uri_component_safe_chars():
    assert inline_html_data_url("a-b_c.d!e~f*g'h(i)") == "data:text/html;charset=utf-8,a-b_c.d!e~f*g'h(i)"


def test_dead_own_remote_falls_back_to_default_inline():
    own = RedirectSpec(remote_html_url=DEAD, declared=True)
    fallback = RedirectSpec(inline_html="<h1>X</h1>", declared=True)
    probe = FakeProbe()

    target = resolve_target(own, fallback, probe)

    assert target == inline_html_data_url("<h1>X</h1>")
    assert probe.calls == [DEAD]


def test_live_own_remote_wins_over_inline():
    own = RedirectSpec(inline_html="<p>own</p>", remote_html_url=LIVE, declared=True)
    assert resolve_target(own, RedirectSpec(), FakeProbe(alive=[LIVE])) == LIVE


def test_own_inline_beats_default_remote():
    own = RedirectSpec(inline_html="<p>own</p>", remote_html_url=DEAD, declared=True)
    fallback = RedirectSpec(remote_html_url=LIVE, declared=True)
    probe = FakeProbe(alive=[LIVE])

    assert resolve_target(own, fallback, probe) == inline_html_data_url("<p>own</p>")
    assert probe.calls == [DEAD]


def test_default_remote_used_when_own_is_empty():
    fallback = RedirectSpec(inline_html="<p>d</p>", remote_html_url=LIVE, declared=True)
    assert resolve_target(RedirectSpec(), fallback, FakeProbe(alive=[LIVE])) == LIVE


def test_nothing_resolvable_returns_none():
    own = RedirectSpec(remote_html_url=DEAD, declared=True)
    fallback = RedirectSpec(remote_html_url=DEAD, declared=True)
    assert resolve_target(own, fallback, FakeProbe()) is None


def test_empty_values_are_not_targets():
    own = RedirectSpec(inline_html="", remote_html_url="", declared=True)
    probe = FakeProbe()
    assert resolve_target(own, RedirectSpec(), probe) is None
    assert probe.calls == []


def test_probe_exception_counts_as_dead():
    own = RedirectSpec(remote_html_url=LIVE, inline_html="<p>x</p>", declared=True)
    assert resolve_target(own, RedirectSpec(), ExplodingProbe()) == inline_html_data_url("<p>x</p>")


class _Resp:
    def __init__(self, status):
        self.status = status

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def getcode(self):
        return self.status


def test_head_probe_accepts_2xx_only(monkeypatch):
    seen = {}

    def fake_urlopen(req, timeout=None):
        seen["method"] = req.get_method()
        seen["timeout"] = timeout
        return _Resp(204 if "ok" in req.full_url else 302)

    monkeypatch.setattr(resolver.urllib.request, "urlopen", fake_urlopen)
    probe = HeadProbe(timeout_seconds=3)

    assert probe.check("https://ok.example/")
    assert seen == {"method": "HEAD", "timeout": 3.0}
    assert not probe.check("https://moved.example/")


def test_head_probe_treats_errors_and_timeouts_as_failure(monkeypatch):
    def fake_urlopen(req, timeout=None):
        if "timeout" in req.full_url:
            raise TimeoutError("timed out")
        raise urllib.error.HTTPError(req.full_url, 404, "Not Found", {}, None)

    monkeypatch.setattr(resolver.urllib.request, "urlopen", fake_urlopen)
    probe = HeadProbe()

    assert not probe.check("https://timeout.example/")
    assert not probe.check("https://missing.example/")


@pytest.mark.parametrize("url", ["file:///etc/passwd", "javascript:alert(1)", ""])
def test_head_probe_refuses_non_http(url, monkeypatch):
    def fail(*a, **k):
        raise AssertionError("urlopen must not be called")

    monkeypatch.setattr(resolver.urllib.request, "urlopen", fail)
    assert not HeadProbe().check(url)
