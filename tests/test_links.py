"""Tests for typed-link parsing and edge derivation."""

from zettelhub.models.links import (
    derive_edges,
    extract_id,
    extract_ids,
    extract_markdown_links,
    extract_wikilinks,
    parse_typed_link,
)
from zettelhub.models.schema import RelationKind


class TestTypedLinks:
    """Tests for the [[id|Title]] micro-syntax."""

    def test_parse_with_display_title(self):
        """Both the ID and the display title are extracted."""
        link = parse_typed_link("[[p1|Parent Corp]]")
        assert link.target_id == "p1"
        assert link.display_title == "Parent Corp"

    def test_parse_without_display_title(self):
        """A bare [[id]] has no display title."""
        link = parse_typed_link("[[p1]]")
        assert link.target_id == "p1"
        assert link.display_title is None

    def test_whitespace_is_trimmed(self):
        """Whitespace around the ID is not part of it."""
        assert extract_id("[[ p1 | Parent ]]") == "p1"

    def test_non_links(self):
        """Plain strings, None and numbers are not links."""
        assert extract_id("Parent Corp") is None
        assert extract_id(None) is None
        assert extract_id(42) is None
        assert extract_id("[[ ]]") is None

    def test_extract_ids_preserves_order(self):
        """IDs come back in sequence order, skipping non-links."""
        values = ["[[s1|S1]]", "not a link", "[[s2|S2]]"]
        assert extract_ids(values) == ["s1", "s2"]

    def test_wikilinks_in_text(self):
        """Body wikilinks are returned once each, in order."""
        text = "See [[acme]] and [[Jane Doe|Jane]]. Again [[acme]]."
        assert extract_wikilinks(text) == ["acme", "Jane Doe"]

    def test_wikilinks_empty_text(self):
        """Empty text has no links."""
        assert extract_wikilinks("") == []

    def test_markdown_links_in_text(self):
        """Relative link URLs are returned once each, in order."""
        text = "See [B](b.md), [Jane](people/jane.md#work) and [B again](b.md)."
        assert extract_markdown_links(text) == ["b.md", "people/jane.md#work"]

    def test_markdown_links_skip_external_and_anchors(self):
        """Scheme URLs, in-page anchors and empty URLs are not note links."""
        text = (
            "[site](https://example.com) [mail](mailto:a@b.c) "
            "[top](#top) [empty]() [file](C:notes.md)"
        )
        assert extract_markdown_links(text) == []


class TestDeriveEdges:
    """Tests for deriving edges from front matter."""

    def test_organization_edges(self):
        """Parent and subsidiaries produce typed edges."""
        edges = derive_edges(
            "org",
            {
                "parent": "[[p1|Parent]]",
                "subsidiaries": ["[[s1|S1]]", "[[s2|S2]]"],
            },
        )
        assert [(e.target_id, e.relation) for e in edges] == [
            ("p1", RelationKind.PARENT),
            ("s1", RelationKind.SUBSIDIARY),
            ("s2", RelationKind.SUBSIDIARY),
        ]
        assert all(e.source_id == "org" for e in edges)

    def test_scalar_relationship(self):
        """A scalar in a list-valued field still yields an edge."""
        edges = derive_edges("p", {"relationships": "[[friend|Friend]]"})
        assert len(edges) == 1
        assert edges[0].relation == RelationKind.RELATIONSHIP

    def test_duplicates_collapse(self):
        """Repeated targets under one relation produce one edge."""
        edges = derive_edges("p", {"relationships": ["[[a]]", "[[a|A again]]"]})
        assert len(edges) == 1

    def test_absent_fields(self):
        """No relation fields means no edges."""
        assert derive_edges("p", {"title": "Nothing"}) == []
