"""Tests for metadata fragment extraction."""

from __future__ import annotations

from bbbmetrics.metadata import extract_metadata, local_name


class TestExtractMetadata:
    """Tests for extract_metadata."""

    def test_single_element(self):
        assert extract_metadata("<tenant>acme</tenant>") == {"tenant": "acme"}

    def test_multiple_siblings(self):
        fragment = """
            <bbb-origin>Greenlight</bbb-origin>
            <tenant>acme</tenant>
        """
        assert extract_metadata(fragment) == {
            "bbb-origin": "Greenlight",
            "tenant": "acme",
        }

    def test_accepts_bytes(self):
        assert extract_metadata(b"<tenant>acme</tenant>") == {"tenant": "acme"}

    def test_values_are_stripped(self):
        assert extract_metadata("<tenant>\n  acme \n</tenant>") == {"tenant": "acme"}

    def test_empty_fragment(self):
        assert extract_metadata("") == {}
        assert extract_metadata(None) == {}
        assert extract_metadata("   \n  ") == {}

    def test_element_without_text_is_skipped(self):
        """Empty elements do not bind a key, even after a text element."""
        fragment = "<tenant>acme</tenant>\n<room></room><empty/>"
        assert extract_metadata(fragment) == {"tenant": "acme"}

    def test_whitespace_only_element_is_skipped(self):
        assert extract_metadata("<tenant>   </tenant>") == {}

    def test_last_duplicate_wins(self):
        fragment = "<tenant>acme</tenant><tenant>globex</tenant>"
        assert extract_metadata(fragment) == {"tenant": "globex"}

    def test_namespace_is_stripped(self):
        fragment = '<m:tenant xmlns:m="urn:example">acme</m:tenant>'
        assert extract_metadata(fragment) == {"tenant": "acme"}

    def test_escaped_text(self):
        assert extract_metadata("<name>Tom &amp; Jerry</name>") == {"name": "Tom & Jerry"}

    def test_malformed_fails_closed(self):
        assert extract_metadata("<tenant>acme</room>") == {}

    def test_unclosed_element_fails_closed(self):
        assert extract_metadata("<tenant>acme") == {}

    def test_partial_results_are_discarded_on_error(self):
        """A fragment that breaks after valid elements still yields nothing."""
        assert extract_metadata("<tenant>acme</tenant><broken>") == {}

    def test_entity_declaration_fails_closed(self):
        fragment = '<!DOCTYPE x [<!ENTITY e "boom">]><tenant>&e;</tenant>'
        assert extract_metadata(fragment) == {}


class TestLocalName:
    """Tests for local_name."""

    def test_plain_tag(self):
        assert local_name("tenant") == "tenant"

    def test_namespaced_tag(self):
        assert local_name("{urn:example}tenant") == "tenant"
