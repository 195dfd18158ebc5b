"""Newick tree I/O with in-place prune and reroot edits.

Nodes live in an arena owned by :class:`PhyloTree`. Parent links and child
lists hold arena indices, so structural edits only rewire integers. Nodes
removed by an edit stay in the arena but are unreachable from the root;
:meth:`PhyloTree.copy` compacts them away.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import total_ordering
import io
import math
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

import numpy as np
import treeswift

from .errors import MalformedTreeError

NodeRef = Union[int, str]
SubtreeKey = Tuple[str, str, float, tuple]


@dataclass
class TreeNode:
    name: str = ""
    distance: float = 0.0
    children: List[int] = field(default_factory=list)
    parent: Optional[int] = None
    outgroup: bool = False

    def is_leaf(self) -> bool:
        return not self.children


@total_ordering
class PhyloTree:
    """Rooted tree with named leaves and branch distances."""

    def __init__(self) -> None:
        self.nodes: List[TreeNode] = []
        self.root: int = self._new_node()

    # -- arena plumbing -------------------------------------------------

    def _new_node(self, name: str = "", distance: float = 0.0) -> int:
        self.nodes.append(TreeNode(name=name, distance=float(distance)))
        return len(self.nodes) - 1

    def _attach(self, parent: int, child: int) -> None:
        self.nodes[child].parent = parent
        self.nodes[parent].children.append(child)

    def _detach(self, child: int) -> None:
        parent = self.nodes[child].parent
        if parent is None:
            return
        self.nodes[parent].children.remove(child)
        self.nodes[child].parent = None

    def _resolve(self, ref: NodeRef) -> int:
        if isinstance(ref, str):
            return self.find(ref)
        idx = int(ref)
        if idx < 0 or idx >= len(self.nodes):
            raise KeyError(f"node index out of range: {idx}")
        return idx

    # -- traversal and queries ------------------------------------------

    def traverse_preorder(self, start: int | None = None) -> Iterator[int]:
        stack = [self.root if start is None else start]
        while stack:
            idx = stack.pop()
            yield idx
            stack.extend(reversed(self.nodes[idx].children))

    def traverse_postorder(self, start: int | None = None) -> Iterator[int]:
        stack: List[Tuple[int, bool]] = [(self.root if start is None else start, False)]
        while stack:
            idx, expanded = stack.pop()
            if expanded:
                yield idx
                continue
            stack.append((idx, True))
            for child in reversed(self.nodes[idx].children):
                stack.append((child, False))

    def leaves(self) -> List[int]:
        return [idx for idx in self.traverse_preorder() if self.nodes[idx].is_leaf()]

    def leaf_names(self) -> List[str]:
        return [self.nodes[idx].name for idx in self.leaves()]

    def find(self, name: str) -> int:
        """Return the index of the reachable node called `name`."""
        for idx in self.traverse_preorder():
            if self.nodes[idx].name == name:
                return idx
        raise KeyError(f"no node named {name!r}")

    def size(self) -> int:
        return len(self.leaves())

    def is_valid(self) -> bool:
        return len(self.nodes[self.root].children) > 0

    def total_length(self) -> float:
        return float(sum(self.nodes[idx].distance for idx in self.traverse_preorder()))

    def outgroups(self) -> List[str]:
        return [self.nodes[idx].name for idx in self.traverse_preorder() if self.nodes[idx].outgroup]

    def copy(self) -> "PhyloTree":
        """Return a compacted deep copy of the reachable tree."""
        out = PhyloTree()
        out.nodes = []
        remap: Dict[int, int] = {}
        for idx in self.traverse_preorder():
            node = self.nodes[idx]
            new_idx = out._new_node(node.name, node.distance)
            out.nodes[new_idx].outgroup = node.outgroup
            remap[idx] = new_idx
            if node.parent is not None and idx != self.root:
                out._attach(remap[node.parent], new_idx)
        out.root = remap[self.root]
        return out

    # -- structural edits -----------------------------------------------

    def prune(self, leaf: NodeRef) -> bool:
        """Remove a leaf and splice out its parent if it becomes unary.

        Returns False without touching the tree when `leaf` has children.
        """
        idx = self._resolve(leaf)
        if not self.nodes[idx].is_leaf():
            return False
        parent = self.nodes[idx].parent
        if parent is None:
            raise ValueError("cannot prune the only node of a tree")
        self._detach(idx)
        remaining = self.nodes[parent].children
        if len(remaining) != 1:
            return True

        other = remaining[0]
        self.nodes[other].distance += self.nodes[parent].distance
        self._detach(other)
        grandparent = self.nodes[parent].parent
        if grandparent is None:
            self.root = other
            return True
        siblings = self.nodes[grandparent].children
        pos = siblings.index(parent)
        self._detach(parent)
        siblings.insert(pos, other)
        self.nodes[other].parent = grandparent
        return True

    def reroot(self, outgroup: NodeRef) -> None:
        """Root the tree on the branch leading to `outgroup`.

        The new root splits the outgroup branch in half and every edge on
        the path to the old root is reversed, keeping its length. A binary
        old root is dissolved into the edge passing through it.
        """
        out = self._resolve(outgroup)
        if not self.nodes[out].is_leaf():
            raise ValueError("outgroup must be a leaf")
        old_parent = self.nodes[out].parent
        if old_parent is None:
            raise ValueError("cannot reroot on the root node")
        old_root = self.root
        new_root = self._new_node()
        root_children = self.nodes[old_root].children

        if old_parent == old_root and len(root_children) == 2:
            # The outgroup edge already runs through the root.
            other = root_children[0] if root_children[1] == out else root_children[1]
            half = 0.5 * (self.nodes[out].distance + self.nodes[other].distance)
            self._detach(out)
            self._detach(other)
            self._attach(new_root, out)
            self._attach(new_root, other)
            self.nodes[other].distance = half
        else:
            half = 0.5 * self.nodes[out].distance
            path = [old_parent]
            while self.nodes[path[-1]].parent is not None:
                path.append(self.nodes[path[-1]].parent)
            original = {idx: self.nodes[idx].distance for idx in path}
            self._detach(out)
            for child in path[:-1]:
                self._detach(child)
            self._attach(new_root, out)
            self._attach(new_root, old_parent)
            self.nodes[old_parent].distance = half
            for child, parent in zip(path, path[1:]):
                remaining = self.nodes[parent].children
                if parent == old_root and len(remaining) == 1:
                    absorbed = remaining[0]
                    self._detach(absorbed)
                    self._attach(child, absorbed)
                    self.nodes[absorbed].distance += original[child]
                else:
                    self._attach(child, parent)
                    self.nodes[parent].distance = original[child]

        self.nodes[out].distance = half
        self.nodes[out].outgroup = True
        self.nodes[new_root].distance = 0.0
        self.root = new_root

    # -- ordering -------------------------------------------------------

    def _subtree_keys(self, *, sort: bool = False) -> Dict[int, SubtreeKey]:
        """Key of every reachable subtree, optionally sorting child lists by key."""
        keys: Dict[int, SubtreeKey] = {}
        for idx in self.traverse_postorder():
            node = self.nodes[idx]
            if sort:
                node.children.sort(key=keys.__getitem__)
            child_keys = tuple(keys[c] for c in node.children)
            first_leaf = min((k[0] for k in child_keys), default=node.name)
            keys[idx] = (first_leaf, node.name, node.distance, child_keys)
        return keys

    def sort_children(self) -> None:
        """Order every child list by leaf name, then distance."""
        self._subtree_keys(sort=True)

    def key(self) -> SubtreeKey:
        return self._subtree_keys()[self.root]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PhyloTree):
            return NotImplemented
        return self.key() == other.key()

    def __lt__(self, other: "PhyloTree") -> bool:
        if not isinstance(other, PhyloTree):
            return NotImplemented
        return self.key() < other.key()

    __hash__ = None  # type: ignore[assignment]

    # -- serialization --------------------------------------------------

    def newick(self) -> str:
        parts: Dict[int, str] = {}
        for idx in self.traverse_postorder():
            node = self.nodes[idx]
            text = ""
            if node.children:
                text = "(" + ",".join(parts.pop(c) for c in node.children) + ")"
            text += node.name
            if idx != self.root or node.distance != 0.0:
                text += ":" + repr(float(node.distance))
            parts[idx] = text
        return parts[self.root] + ";"

    def __str__(self) -> str:
        return self.newick()

    def __repr__(self) -> str:
        return f"PhyloTree({self.newick()!r})"

    def save(self, path: str | Path) -> None:
        Path(path).write_text(self.newick() + "\n", encoding="utf-8")

    def to_treeswift(self) -> treeswift.Tree:
        return _read_tree(self.newick())

    def leaf_distance_matrix(self) -> Tuple[List[str], np.ndarray]:
        """Patristic distances between leaves, ordered by sorted leaf name."""
        dm = self.to_treeswift().distance_matrix(leaf_labels=True)
        labels = sorted(self.leaf_names())
        out = np.zeros((len(labels), len(labels)), dtype=float)
        for i, a in enumerate(labels):
            for j, b in enumerate(labels):
                if i != j:
                    out[i, j] = float(dm[a][b])
        return labels, out


def _read_tree(newick: str) -> treeswift.Tree:
    if hasattr(treeswift, "read_tree_newick"):
        return treeswift.read_tree_newick(newick)
    return treeswift.read_tree(io.StringIO(newick), "newick")


def _match_parentheses(text: str) -> Dict[int, int]:
    opened: List[int] = []
    match: Dict[int, int] = {}
    for i, ch in enumerate(text):
        if ch == "(":
            opened.append(i)
        elif ch == ")":
            if not opened:
                raise MalformedTreeError("Malformed Newick tree, unmatched parentheses.")
            match[opened.pop()] = i
    if opened:
        raise MalformedTreeError("Malformed Newick tree, unmatched parentheses.")
    return match


def _split_children(text: str, lo: int, hi: int, match: Dict[int, int]) -> List[Tuple[int, int]]:
    """Split text[lo:hi] on commas that are not nested in parentheses."""
    spans: List[Tuple[int, int]] = []
    begin = lo
    i = lo
    while i < hi:
        ch = text[i]
        if ch == "(":
            i = match[i] + 1
            continue
        if ch == ",":
            spans.append((begin, i))
            begin = i + 1
        i += 1
    spans.append((begin, hi))
    return spans


def _apply_meta(node: TreeNode, meta: str) -> None:
    if any(ch in "()," for ch in meta):
        raise MalformedTreeError(f"Malformed Newick tree, unexpected text {meta!r}.")
    name, _, distance = meta.partition(":")
    node.name = name
    if distance:
        try:
            value = float(distance)
        except ValueError:
            raise MalformedTreeError("Malformed Newick tree, expected a number.") from None
        if not math.isfinite(value):
            raise MalformedTreeError("Malformed Newick tree, expected a finite number.")
        if value < 0.0:
            raise MalformedTreeError(f"Malformed Newick tree, negative distance {value!r}.")
        node.distance = value


def parse_newick(text: str, *, sort_children: bool = False) -> PhyloTree:
    """Parse the first tree in `text`.

    Text after the first ``;`` is ignored, so files holding several trees
    yield the first one. Whitespace is not significant.
    """
    body = "".join(text.split(";", 1)[0].split())
    if not body:
        raise MalformedTreeError("Malformed Newick tree.")
    match = _match_parentheses(body)

    tree = PhyloTree()
    pending = [(tree.root, 0, len(body))]
    while pending:
        idx, lo, hi = pending.pop()
        meta_start = lo
        if lo < hi and body[lo] == "(":
            close = match[lo]
            child_spans = _split_children(body, lo + 1, close, match)
            if len(child_spans) < 2:
                raise MalformedTreeError("Malformed Newick tree, internal node with a single child.")
            spans = []
            for child_lo, child_hi in child_spans:
                child = tree._new_node()
                tree._attach(idx, child)
                spans.append((child, child_lo, child_hi))
            pending.extend(reversed(spans))
            meta_start = close + 1
        _apply_meta(tree.nodes[idx], body[meta_start:hi])

    if len(tree.nodes[tree.root].children) <= 1:
        raise MalformedTreeError("Malformed Newick tree, not enough leaves found.")
    if sort_children:
        tree.sort_children()
    return tree


def read_tree(path: str | Path) -> PhyloTree:
    """Read a Newick file, keeping only its first tree."""
    src = Path(path)
    if not src.exists():
        raise MalformedTreeError(f"Newick tree file does not exist: {src}")
    return parse_newick(src.read_text(encoding="utf-8"), sort_children=True)
