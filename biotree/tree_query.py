#!/usr/bin/env python
"""
Tree Query Module - Read-only traversals and measurements

Depth to root, lowest common ancestors, pairwise and all-pairs distances, the
leaf walk, and induced subtrees. Missing branch lengths are counted as zero;
every measurement that crossed such an edge is reported as unitless.
"""

import logging
import numpy as np

from biotree.exceptions import InvalidArgumentError
from biotree.reports import DistanceMatrix


class TreeQuery:
    """Answers structural and distance questions about a tree."""

    def __init__(self, tree):
        """
        Initialize with a biotree Tree.

        Args:
            tree (Tree): The tree to query.
        """
        self.tree = tree
        self.logger = logging.getLogger(__name__)

    def depths(self):
        """Distance from the root for every node, missing lengths counted as zero."""
        depths = {}
        for node in self.tree.preorder():
            if node.parent_id is None:
                depths[node.id] = 0.0
            else:
                depths[node.id] = depths[node.parent_id] + (node.length or 0.0)
        return depths

    def depth(self, identifier):
        """
        Sum of branch lengths from a node up to the root.

        Edges without a length count as zero; use path_is_complete to tell
        whether the result carries units.
        """
        node = self.tree.find(identifier)
        edges = []
        cursor = node
        while cursor.parent_id is not None:
            edges.append(cursor)
            cursor = self.tree.parent(cursor)
        if not self.tree.has_complete_lengths(edges):
            self.logger.warning(f"Depth of {node.name} crosses edges without length; result is unitless")
        return sum(edge.length or 0.0 for edge in edges)

    def lca(self, identifiers):
        """
        Lowest common ancestor of a set of nodes.

        A single distinct node yields its direct parent.

        Args:
            identifiers (list): Labels or identities.

        Returns:
            Node: The common ancestor.

        Raises:
            InvalidArgumentError: For an empty list, or the root given alone.
            NotFoundError: For an unknown identifier.
        """
        if not identifiers:
            raise InvalidArgumentError("No nodes given for common ancestor search")

        nodes = []
        for node in self.tree.find_all(identifiers):
            if all(node.id != seen.id for seen in nodes):
                nodes.append(node)

        if len(nodes) == 1:
            parent = self.tree.parent(nodes[0])
            if parent is None:
                raise InvalidArgumentError("The root has no ancestor", token=nodes[0].name)
            return parent

        ancestor = nodes[0]
        for node in nodes[1:]:
            ancestor = self._pair_lca(ancestor, node)
        return ancestor

    def _pair_lca(self, first, second):
        lineage = {first.id} | {node.id for node in self.tree.ancestors(first)}
        cursor = second
        while cursor.id not in lineage:
            cursor = self.tree.parent(cursor)
        return cursor

    def _path_edges(self, first, second):
        """Nodes whose parent edge lies on the path between two nodes."""
        join = self._pair_lca(first, second)
        edges = []
        for end in (first, second):
            cursor = end
            while cursor.id != join.id:
                edges.append(cursor)
                cursor = self.tree.parent(cursor)
        return edges

    def distance(self, first, second):
        """Sum of branch lengths on the path between two nodes."""
        first = self.tree.find(first)
        second = self.tree.find(second)
        edges = self._path_edges(first, second)
        if not self.tree.has_complete_lengths(edges):
            self.logger.warning(f"Path {first.name}-{second.name} crosses edges without length; "
                                f"result is unitless")
        return sum(edge.length or 0.0 for edge in edges)

    def path_is_complete(self, first, second=None):
        """True if every edge on the path (to the root when second is omitted) has a length."""
        first = self.tree.find(first)
        second = self.tree.root if second is None else self.tree.find(second)
        return self.tree.has_complete_lengths(self._path_edges(first, second))

    def all_pair_distances(self):
        """
        Distances between every pair of leaves.

        One post-order pass: at each internal node the leaves of different child
        subtrees meet, so their distance is depth(a) + depth(b) - 2 * depth(node).

        Returns:
            DistanceMatrix: Labels in pre-order, symmetric matrix, unitless flag.
        """
        leaves = self.tree.leaves()
        index = {leaf.id: i for i, leaf in enumerate(leaves)}
        depths = self.depths()
        leaf_depths = np.array([depths[leaf.id] for leaf in leaves], dtype=float)
        matrix = np.zeros((len(leaves), len(leaves)), dtype=float)

        below = {}
        for node in self.tree.postorder():
            if node.is_leaf():
                below[node.id] = np.array([index[node.id]], dtype=int)
                continue

            groups = [below.pop(child_id) for child_id in node.child_ids]
            for i, first in enumerate(groups):
                for second in groups[i + 1:]:
                    block = leaf_depths[first][:, None] + leaf_depths[second][None, :] - 2 * depths[node.id]
                    matrix[np.ix_(first, second)] = block
                    matrix[np.ix_(second, first)] = block.T
            below[node.id] = np.concatenate(groups)

        unitless = not self.tree.has_complete_lengths()
        if unitless:
            self.logger.warning("Tree has edges without length; pairwise distances are unitless")
        return DistanceMatrix([leaf.name for leaf in leaves], matrix, unitless)

    def walk(self, start):
        """
        Walk the tree depth-first from a leaf, visiting every other leaf once.

        Each edge is counted the first time it is crossed; going back over it
        adds nothing.

        Args:
            start (str): Label or identity of the starting leaf.

        Returns:
            list: (otu, travelled, distance) per visited leaf, where travelled is
                  the length of all distinct edges crossed so far and distance is
                  the direct path length from the start leaf.
        """
        start = self.tree.find(start)
        if not start.is_leaf():
            raise InvalidArgumentError(f"Walk must start at a leaf, {start.name} is internal", token=start.name)

        counted_edges = set()
        distances = {start.id: 0.0}
        travelled = 0.0
        rows = []

        # Stack entries are (node, edge crossed to reach it); the edge is keyed by its child side
        stack = [(start, None)]
        while stack:
            node, edge = stack.pop()
            if edge is not None and edge.id not in counted_edges:
                counted_edges.add(edge.id)
                travelled += edge.length or 0.0

            if node.is_leaf() and node.id != start.id:
                rows.append((node.name, travelled, distances[node.id]))

            neighbours = []
            for child in self.tree.children(node):
                if child.id not in distances:
                    distances[child.id] = distances[node.id] + (child.length or 0.0)
                    neighbours.append((child, child))
            parent = self.tree.parent(node)
            if parent is not None and parent.id not in distances:
                distances[parent.id] = distances[node.id] + (node.length or 0.0)
                neighbours.append((parent, node))
            stack.extend(reversed(neighbours))

        if not self.tree.has_complete_lengths():
            self.logger.warning("Tree has edges without length; walk distances are unitless")
        return rows

    def subset(self, identifiers):
        """
        Induced subtree of the named nodes.

        Keeps the named nodes, everything below them, and the ancestors that
        connect them up to their common ancestor. Nodes left with one child are
        merged with it. A single internal node yields the subtree rooted there.

        Returns:
            Tree: A new tree; the original is untouched.
        """
        if not identifiers:
            raise InvalidArgumentError("No nodes given for subset")

        nodes = self.tree.find_all(identifiers)
        anchor = nodes[0]
        for node in nodes[1:]:
            anchor = self._pair_lca(anchor, node)

        keep = {anchor.id}
        for node in nodes:
            keep.update(descendant.id for descendant in self.tree.preorder(node))
            cursor = node
            while cursor.id != anchor.id:
                keep.add(cursor.id)
                cursor = self.tree.parent(cursor)

        result = self.tree.copy_subtree(anchor, keep)
        if anchor.id != self.tree.root_id:
            result.root.length = None
            result.root.support = None

        for node in list(result.postorder()):
            if len(node.child_ids) == 1:
                result.splice(node, inherit_support=True)

        self.logger.info(f"Subset tree has {result.leaf_count} leaves")
        return result

    def otus(self):
        """(label, branch length) for every leaf in pre-order."""
        return [(leaf.name, leaf.length) for leaf in self.tree.leaves()]

    def otu_count(self):
        return self.tree.leaf_count

    def total_length(self):
        return self.tree.total_length()

    def all_lengths(self):
        """(identity, label, branch length) for every node in pre-order."""
        return [(node.id, node.label, node.length) for node in self.tree.preorder()]

    def otus_desc(self, identifier):
        """Labels of the leaves below a node."""
        node = self.tree.find(identifier)
        return [leaf.name for leaf in self.tree.leaves(node)]

    def otus_desc_all(self):
        """(node, leaf labels) for every internal node in pre-order."""
        return [(node.name, [leaf.name for leaf in self.tree.leaves(node)])
                for node in self.tree.internal_nodes()]
