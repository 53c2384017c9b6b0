import io
import json

import pytest

pytest.importorskip("adblockparser")

from tools import policy_compile


POLICY = """
lock: true
authn: "%s"
global:
  html: "<h1>Default</h1>"
urls:
  - url: "https://news.example/*"
    htmlsrc: https://dead.example/
""" % ("b" * 64)


def _run(argv, capsys):
    code = policy_compile.main(argv)
    out = capsys.readouterr().out
    return code, (json.loads(out) if out.strip() else None)


def test_report_lists_rules_and_hides_digest(tmp_path, capsys):
    p = tmp_path / "policy.yaml"
    p.write_text(POLICY, encoding="utf-8")

    code, report = _run([str(p), "--no-probe", "--check-url", "https://news.example/x", "--check-url", "https://other.example/"], capsys)

    assert code == 0
    assert report["lock_status"] == "locked"
    assert "b" * 64 not in json.dumps(report)
    assert report["block_rules"] == []
    assert report["checks"][0]["redirect"] == "data:text/html;charset=utf-8,%3Ch1%3EDefault%3C%2Fh1%3E"
    assert report["checks"][1]["redirect"] is None


def test_block_check_uses_rule_engine(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO("urls:\n  - url: '*.ads.example/*'\n"))

    code, report = _run(["-", "--no-probe", "--check-url", "https://cdn.ads.example/a.js"], capsys)

    assert code == 0
    assert report["block_rules"] == [{"id": 1, "pattern": "*.ads.example/*"}]
    assert report["checks"][0]["blocked"] is True


def test_malformed_document_exits_2(tmp_path, capsys):
    p = tmp_path / "bad.yaml"
    p.write_text("- not\n- a mapping\n", encoding="utf-8")
    code, report = _run([str(p)], capsys)
    assert code == 2
    assert report is None
