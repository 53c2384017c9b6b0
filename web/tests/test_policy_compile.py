import unittest

import pytest

from interceptor.access_gate import sha256_hex
from interceptor.errors import MalformedDocumentError
from interceptor.policy import (
    LOCKED,
    UNLOCKED,
    BlockRule,
    RedirectRule,
    RedirectSpec,
    compile_policy,
    compile_policy_text,
    parse_policy,
)


SCENARIO = """
lock: true
authn: "%s"
urls:
  - url: "*.ads.example/*"
  - url: "*.news.example/*"
    html: "<p>blocked</p>"
""" % ("a" * 64)


class TestPolicyCompile(unittest.TestCase):

    def test_scenario_document(self):
        compiled = compile_policy_text(SCENARIO)

        self.assertEqual(compiled.block_rules, (BlockRule(id=1, pattern="*.ads.example/*"),))
        self.assertEqual(len(compiled.redirect_rules), 1)
        rr = compiled.redirect_rules[0]
        self.assertEqual(rr.pattern, "*.news.example/*")
        self.assertEqual(rr.own.inline_html, "<p>blocked</p>")
        self.assertEqual(compiled.lock.status, LOCKED)
        self.assertEqual(compiled.lock.digest_hex, "a" * 64)

    def test_entry_without_redirect_and_no_default_blocks(self):
        compiled = compile_policy_text("urls:\n  - url: 'https://x.example/*'\n")
        self.assertEqual(compiled.block_rules, (BlockRule(id=1, pattern="https://x.example/*"),))
        self.assertEqual(compiled.redirect_rules, ())

    def test_document_default_turns_plain_entries_into_redirects(self):
        compiled = compile_policy_text(
            "global:\n  html: '<h1>No</h1>'\nurls:\n  - url: 'https://x.example/*'\n"
        )
        self.assertEqual(compiled.block_rules, ())
        self.assertEqual(len(compiled.redirect_rules), 1)
        rr = compiled.redirect_rules[0]
        self.assertFalse(rr.own.declared)
        self.assertEqual(rr.default.inline_html, "<h1>No</h1>")

    def test_block_ids_are_dense_across_redirects(self):
        compiled = compile_policy_text(
            "urls:\n"
            "  - url: a\n"
            "  - url: b\n"
            "    htmlsrc: https://h.example/\n"
            "  - url: c\n"
            "  - {html: '<p>no url</p>'}\n"
            "  - url: 5\n"
            "  - url: d\n"
        )
        self.assertEqual(
            [(r.id, r.pattern) for r in compiled.block_rules],
            [(1, "a"), (2, "c"), (3, "d")],
        )
        self.assertEqual([r.pattern for r in compiled.redirect_rules], ["b"])

    def test_empty_redirect_key_still_counts_as_declared(self):
        compiled = compile_policy_text("urls:\n  - url: a\n    html: ''\n")
        self.assertEqual(compiled.block_rules, ())
        self.assertTrue(compiled.redirect_rules[0].own.declared)

    def test_lock_requires_true_and_valid_digest(self):
        digest = "A" * 64
        self.assertEqual(compile_policy_text(f"lock: true\nauthn: '{digest}'\n").lock.digest_hex, "a" * 64)
        self.assertEqual(compile_policy_text("lock: true\nauthn: 'abc'\n").lock.status, UNLOCKED)
        self.assertEqual(compile_policy_text("lock: true\n").lock.status, UNLOCKED)
        self.assertEqual(compile_policy_text(f"lock: 'yes'\nauthn: '{'a' * 64}'\n").lock.status, UNLOCKED)
        self.assertFalse(compile_policy_text(f"lock: false\nauthn: '{'a' * 64}'\n").lock.locked)

    def test_digest_with_trailing_newline_disables_lock(self):
        # A YAML block scalar keeps its final newline.
        compiled = compile_policy_text("lock: true\nauthn: |\n  %s\n" % sha256_hex("secret"))
        self.assertEqual(compiled.lock.status, UNLOCKED)
        self.assertIsNone(compiled.lock.digest_hex)
        self.assertEqual(compile_policy_text("lock: true\nauthn: ' %s'\n" % ("a" * 64)).lock.status, UNLOCKED)

    def test_non_list_urls_has_no_entries(self):
        compiled = compile_policy_text("urls: 'https://x.example/'\n")
        self.assertEqual(compiled.block_rules, ())
        self.assertEqual(compiled.redirect_rules, ())


@pytest.mark.parametrize("text", ["", "just a string", "- a\n- b\n", "key: [unclosed"])
def test_malformed_documents_are_rejected(text):
    with pytest.raises(MalformedDocumentError):
        parse_policy(text)


def test_redirect_rule_dict_roundtrip_keeps_declared():
    rule = RedirectRule(
        pattern="*",
        own=RedirectSpec(inline_html="", declared=True),
        default=RedirectSpec(remote_html_url="https://d.example/"),
    )
    assert RedirectRule.from_dict(rule.to_dict()) == rule


def test_compile_policy_accepts_parsed_document():
    doc = parse_policy("urls:\n  - url: a\n")
    assert compile_policy(doc).block_rules[0].pattern == "a"


if __name__ == "__main__":
    unittest.main()
