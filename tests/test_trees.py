"""Tests for Newick parsing, serialization and tree edits."""

from __future__ import annotations

import io

import numpy as np
import pytest
import treeswift

from ecosim.errors import MalformedTreeError
from ecosim.trees import PhyloTree, parse_newick, read_tree


def _read_tree(newick: str) -> treeswift.Tree:
    if hasattr(treeswift, "read_tree_newick"):
        return treeswift.read_tree_newick(newick)
    return treeswift.read_tree(io.StringIO(newick), "newick")


def _comb_newick(taxa: list[str]) -> str:
    tree = f"{taxa[0]}:1.0"
    for i, label in enumerate(taxa[1:], start=1):
        tree = f"({tree},{label}:{0.5 * i}):0.25"
    return tree + ";"


def _leaf_distances(tree: PhyloTree) -> dict[tuple[str, str], float]:
    labels, matrix = tree.leaf_distance_matrix()
    return {(a, b): float(matrix[i, j]) for i, a in enumerate(labels) for j, b in enumerate(labels)}


def test_parse_names_and_distances():
    tree = parse_newick("((A:0.1,B:0.2)X:0.3,C:0.4);")
    assert tree.leaf_names() == ["A", "B", "C"]
    x = tree.nodes[tree.find("X")]
    assert x.distance == pytest.approx(0.3)
    assert [tree.nodes[c].name for c in x.children] == ["A", "B"]
    assert tree.nodes[tree.find("A")].parent == tree.find("X")
    assert tree.size() == 3


def test_parse_ignores_whitespace_and_trailing_trees():
    tree = parse_newick("( A : 1 ,\n (B:2, C:3) : 4 );((D,E),F);")
    assert sorted(tree.leaf_names()) == ["A", "B", "C"]
    assert tree.nodes[tree.find("C")].distance == pytest.approx(3.0)


def test_round_trip_is_structurally_identical():
    text = "(((A:0.125,B:1e-05):0.5,(C:2,D:3.3)cd:0.75):0.0,E:7);"
    tree = parse_newick(text)
    again = parse_newick(tree.newick())
    assert again == tree
    assert again.newick() == tree.newick()
    assert sorted(again.leaf_names()) == ["A", "B", "C", "D", "E"]
    assert again.total_length() == pytest.approx(tree.total_length())


def test_round_trip_matches_treeswift():
    tree = parse_newick("((A:1,B:2):0.5,(C:3,D:4):1.5);")
    ts = _read_tree(tree.newick())
    assert sorted(str(n.label) for n in ts.traverse_leaves()) == ["A", "B", "C", "D"]
    total = sum(float(n.edge_length or 0.0) for n in ts.traverse_preorder())
    assert total == pytest.approx(tree.total_length())


@pytest.mark.parametrize(
    "text",
    [
        "",
        ";",
        "((A,B);",
        "(A,B));",
        "(A:x,B);",
        "(A,B:1:2x);",
        "(A);",
        "((A,B));",
        "A;",
        "((A,B)x(C,D));",
        "(A:1,(B:2)X:3);",
        "((A:1,B:2):3,(C:4)D:5);",
        "(A:-1,B:2);",
        "(A:1,(B:2,C:3):-0.5);",
    ],
)
def test_malformed_trees_raise(text):
    with pytest.raises(MalformedTreeError):
        parse_newick(text)


def test_deep_comb_tree_parses_without_recursion():
    taxa = [f"T{i}" for i in range(3000)]
    tree = parse_newick(_comb_newick(taxa))
    assert tree.size() == 3000
    again = parse_newick(tree.newick())
    assert again.newick() == tree.newick()
    assert again.leaf_names() == tree.leaf_names()


def test_read_tree_sorts_children(tmp_path):
    src = tmp_path / "tree.nwk"
    src.write_text("((D:1,C:1):1,\n(B:1,A:1):1);\n", encoding="utf-8")
    tree = read_tree(src)
    assert tree.leaf_names() == ["A", "B", "C", "D"]


def test_read_tree_missing_file(tmp_path):
    with pytest.raises(MalformedTreeError):
        read_tree(tmp_path / "missing.nwk")


def test_ordering_is_total_and_by_leaf_name():
    a = parse_newick("(A:1,B:1);")
    b = parse_newick("(A:1,C:1);")
    c = parse_newick("(A:1,B:2);")
    assert a < b
    assert a < c
    assert sorted([b, c, a]) == [a, c, b]
    assert a == parse_newick("(A:1,B:1);")


def test_prune_removes_leaf_and_parent():
    tree = parse_newick("((A:1,B:2)X:3,(C:4,D:5)Y:6);")
    before_length = tree.total_length()
    assert tree.prune("A") is True
    assert sorted(tree.leaf_names()) == ["B", "C", "D"]
    b = tree.nodes[tree.find("B")]
    assert b.distance == pytest.approx(5.0)
    assert b.parent == tree.root
    assert tree.total_length() == pytest.approx(before_length - 1.0)


def test_prune_promotes_sibling_to_root():
    tree = parse_newick("(A:1,(B:2,C:3):4);")
    assert tree.prune("A")
    assert tree.nodes[tree.root].parent is None
    assert tree.nodes[tree.root].distance == pytest.approx(4.0)
    assert sorted(tree.leaf_names()) == ["B", "C"]


def test_prune_internal_node_is_noop():
    tree = parse_newick("((A:1,B:2)X:3,C:4);")
    text = tree.newick()
    assert tree.prune("X") is False
    assert tree.newick() == text


def test_prune_keeps_multifurcation():
    tree = parse_newick("(A:1,B:2,C:3);")
    assert tree.prune("B")
    assert tree.leaf_names() == ["A", "C"]
    assert tree.total_length() == pytest.approx(4.0)


def test_prune_law_holds_for_every_leaf():
    text = "(((A:1,B:2):3,(C:4,D:5):6):7,((E:8,F:9):10,G:11):12);"
    for name in "ABCDEFG":
        tree = parse_newick(text)
        leaf_distance = tree.nodes[tree.find(name)].distance
        n_before = tree.size()
        length_before = tree.total_length()
        tree.prune(name)
        assert tree.size() == n_before - 1
        assert tree.total_length() == pytest.approx(length_before - leaf_distance)
        assert name not in tree.leaf_names()


def test_reroot_builds_outgroup_root():
    tree = parse_newick("(((A:1,B:2)X:3,C:4)Y:5,D:6);")
    tree.reroot("A")
    root = tree.nodes[tree.root]
    assert len(root.children) == 2
    a = tree.nodes[tree.find("A")]
    assert a.parent == tree.root
    assert a.distance == pytest.approx(0.5)
    assert a.outgroup is True
    assert tree.outgroups() == ["A"]
    assert sorted(tree.leaf_names()) == ["A", "B", "C", "D"]


def test_reroot_preserves_leaf_distances():
    text = "(((A:1,B:2)X:3,(C:4,E:0.5):1)Y:5,(D:6,F:2):1);"
    original = _leaf_distances(parse_newick(text))
    for name in "ABCDEF":
        tree = parse_newick(text)
        tree.reroot(name)
        assert sorted(tree.leaf_names()) == sorted("ABCDEF")
        rerooted = _leaf_distances(tree)
        for key, value in original.items():
            assert rerooted[key] == pytest.approx(value)


def test_reroot_preserves_distances_with_multifurcating_root():
    text = "((A:1,B:2):3,C:4,D:5);"
    original = _leaf_distances(parse_newick(text))
    for name in "ABCD":
        tree = parse_newick(text)
        tree.reroot(name)
        rerooted = _leaf_distances(tree)
        for key, value in original.items():
            assert rerooted[key] == pytest.approx(value)


def test_reroot_twice_is_idempotent():
    tree = parse_newick("(((A:1,B:2):3,C:4):5,(D:6,E:7):8);")
    tree.reroot("C")
    once = tree.copy()
    tree.reroot("C")
    assert tree == once
    assert tree.copy().newick() == once.newick()


def test_reroot_then_prune_outgroup():
    tree = parse_newick("(((A:1,B:2):3,C:4):5,(D:6,E:7):8);")
    tree.reroot("E")
    tree.prune("E")
    assert sorted(tree.leaf_names()) == ["A", "B", "C", "D"]
    assert tree.nodes[tree.root].parent is None
    assert len(tree.nodes[tree.root].children) == 2


def test_reroot_rejects_internal_node():
    tree = parse_newick("((A:1,B:2)X:3,C:4);")
    with pytest.raises(ValueError):
        tree.reroot("X")
    with pytest.raises(KeyError):
        tree.reroot("missing")


def test_copy_compacts_detached_nodes():
    tree = parse_newick("((A:1,B:2):3,(C:4,D:5):6);")
    tree.prune("A")
    tree.reroot("D")
    compact = tree.copy()
    assert len(compact.nodes) == len(list(compact.traverse_preorder()))
    assert compact == tree


def test_leaf_distance_matrix_symmetric():
    tree = parse_newick("((A:1,B:2):3,C:4);")
    labels, matrix = tree.leaf_distance_matrix()
    assert labels == ["A", "B", "C"]
    assert np.allclose(matrix, matrix.T)
    assert matrix[0, 1] == pytest.approx(3.0)
    assert matrix[0, 2] == pytest.approx(8.0)


def test_save_writes_newick(tmp_path):
    tree = parse_newick("((A:1,B:2):3,C:4);")
    out = tmp_path / "out.nwk"
    tree.save(out)
    assert parse_newick(out.read_text(encoding="utf-8")) == tree


def test_single_child_internal_node_rejected():
    with pytest.raises(MalformedTreeError, match="single child"):
        parse_newick("(A:1,(B:2)X:3);")


def test_negative_distance_rejected():
    with pytest.raises(MalformedTreeError, match="negative distance"):
        parse_newick("((A:1,B:-2):3,C:4);")


def test_sort_children_makes_permutations_equal():
    a = parse_newick("((D:1,(C:2,B:3):4):5,(A:6,E:7):8);", sort_children=True)
    b = parse_newick("((E:7,A:6):8,((B:3,C:2):4,D:1):5);", sort_children=True)
    assert a.newick() == b.newick()
    assert a.leaf_names() == ["A", "E", "B", "C", "D"]
    assert a == b
