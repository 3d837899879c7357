"""Tests for the document tree and text selections."""

from __future__ import annotations

import pytest

from annoti.document.tree import DocumentTree, Element, Selection, TextLeaf, element


def _tree() -> DocumentTree:
    return DocumentTree(
        [
            element("p", "Hello world"),
            element("p", "Second ", element("b", "bold"), " paragraph"),
        ]
    )


class TestElementHelpers:
    """Construction helpers and structural edits."""

    def test_element_helper_maps_attribute_names(self) -> None:
        """class_ and data_x become class and data-x."""
        el = element("div", class_="note a", data_x="1")
        assert el.attrs == {"class": "note a", "data-x": "1"}
        assert el.classes == ["note", "a"]

    def test_children_get_parent(self) -> None:
        el = element("p", "text", element("b", "x"))
        assert all(child.parent is el for child in el.children)

    def test_replace_child_splices_in_place(self) -> None:
        """replace_child swaps one node for several and detaches the old one."""
        old = TextLeaf(text="abc")
        parent = Element(tag="p", children=[old])
        a, b = TextLeaf(text="a"), TextLeaf(text="bc")

        parent.replace_child(old, [a, b])

        assert parent.children == [a, b]
        assert a.parent is parent
        assert old.parent is None

    def test_marker_requires_group_attribute(self) -> None:
        """A plain <mark> is not a highlight marker."""
        assert not element("mark", "x").is_marker
        marker = element("mark", "x", data_group_id="g1")
        assert marker.is_marker
        assert marker.group_id == "g1"

    def test_to_html_escapes_text_and_attributes(self) -> None:
        el = element("p", "a < b", title='say "hi"')
        assert el.to_html() == '<p title="say &quot;hi&quot;">a &lt; b</p>'


class TestDocumentTree:
    """Whole-tree queries."""

    def test_text_concatenates_leaves_in_order(self) -> None:
        assert _tree().text == "Hello worldSecond bold paragraph"

    def test_render_ids_are_unique(self) -> None:
        assert DocumentTree().render_id != DocumentTree().render_id

    def test_find_by_id(self) -> None:
        tree = DocumentTree([element("section", element("p", "x"), id="intro")])
        found = tree.find_by_id("intro")
        assert found is not None
        assert found.tag == "section"
        assert tree.find_by_id("missing") is None


class TestSelect:
    """DocumentTree.select maps document-text offsets onto leaves."""

    def test_select_inside_one_leaf(self) -> None:
        sel = _tree().select(6, 11)
        assert sel.start_leaf is sel.end_leaf
        assert (sel.start_offset, sel.end_offset) == (6, 11)
        assert sel.text == "world"

    def test_select_across_elements(self) -> None:
        sel = _tree().select(6, 22)
        assert sel.text == "worldSecond bold"
        assert sel.start_leaf.text == "Hello world"
        assert sel.end_leaf.text == "bold"

    def test_boundary_binds_to_following_leaf_for_start(self) -> None:
        """A start at a leaf boundary begins in the next leaf, not at the end of
        the previous one."""
        sel = _tree().select(11, 14)
        assert sel.start_leaf.text == "Second "
        assert sel.start_offset == 0

    def test_collapsed_selection(self) -> None:
        sel = _tree().select(3, 3)
        assert sel.is_collapsed
        assert sel.text == ""

    def test_out_of_range_raises(self) -> None:
        with pytest.raises(ValueError, match="outside document text"):
            _tree().select(0, 999)


class TestSelection:
    """Selection normalisation and leaf enumeration."""

    def test_backwards_selection_is_normalised(self) -> None:
        tree = _tree()
        leaves = list(tree.iter_leaves())
        backwards = Selection(leaves[2], 2, leaves[0], 6)
        sel = backwards.normalised()
        assert sel.start_leaf is leaves[0]
        assert sel.end_leaf is leaves[2]
        assert sel.text == "worldSecond bo"

    def test_offset_outside_leaf_rejected(self) -> None:
        leaf = TextLeaf(text="abc")
        Element(tag="p", children=[leaf])
        with pytest.raises(ValueError, match="outside leaf"):
            Selection(leaf, 0, leaf, 4)

    def test_intersecting_leaves_in_document_order(self) -> None:
        sel = _tree().select(0, 32)
        texts = [leaf.text for leaf in sel.intersecting_leaves()]
        assert texts == ["Hello world", "Second ", "bold", " paragraph"]

    def test_common_ancestor(self) -> None:
        tree = _tree()
        sel = tree.select(12, 20)
        assert sel.common_ancestor().tag == "p"
        assert tree.select(0, 20).common_ancestor() is tree.root
