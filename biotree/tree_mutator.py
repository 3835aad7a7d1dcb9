#!/usr/bin/env python
"""
Tree Mutator Module - Structural changes to a tree

Rerooting, midpoint rooting, support-based collapsing, OTU deletion, random
resolution of polytomies, stripping of lengths and supports, node labelling,
and the lazy sequence of OTU-swapped variants. Operations change the tree in
place and return it, except swap_otu_pairs which yields copies.
"""

import math
import logging
import numpy as np

from biotree.exceptions import InvalidArgumentError, MissingDataError
from biotree.polytomy_resolver import PolytomyResolver
from biotree.tree_query import TreeQuery


class SwapVariants:
    """
    Trees with one OTU's label exchanged with each other OTU in turn.

    The sequence is lazy and restartable: every iteration builds the variants
    again from a private snapshot of the tree, one per partner OTU.
    """

    def __init__(self, tree, otu):
        self.tree = tree.copy()
        self.otu = self.tree.find(otu)
        if not self.otu.is_leaf():
            raise InvalidArgumentError(f"Only OTUs can be swapped, {self.otu.name} is internal",
                                       token=self.otu.name)
        self.partner_ids = [leaf.id for leaf in self.tree.leaves() if leaf.id != self.otu.id]

    def __len__(self):
        return len(self.partner_ids)

    def __iter__(self):
        for partner_id in self.partner_ids:
            variant = self.tree.copy()
            otu = variant.node(self.otu.id)
            partner = variant.node(partner_id)
            otu_label, partner_label = otu.label, partner.label
            variant.relabel(otu, partner_label)
            variant.relabel(partner, otu_label)
            yield variant


class TreeMutator:
    """Applies structural mutations to a tree."""

    def __init__(self, tree, rng=None, config=None):
        """
        Initialize with a tree.

        Args:
            tree (Tree): The tree to mutate in place.
            rng (numpy.random.Generator, optional): Randomness for force_bifurcating.
            config (dict, optional): 'seed' for the default generator.
        """
        self.tree = tree
        self.config = config or {}
        self.rng = rng if rng is not None else np.random.default_rng(self.config.get('seed'))
        self.query = TreeQuery(tree)
        self.logger = logging.getLogger(__name__)

    def reroot(self, identifier):
        """
        Make a node the root by inverting the edges on its path to the old root.

        Length and support stay with their edge: after inversion each edge is
        described by its new child side. The new root takes over the old root's
        root-edge values, so rerooting back at the old root restores the tree.
        """
        target = self.tree.find(identifier)
        if target.id == self.tree.root_id:
            self.logger.info(f"{target.name} is already the root")
            return self.tree

        path = [target] + self.tree.ancestors(target)
        values = [(node.length, node.support) for node in path]

        for node in path[:-1]:
            self.tree.detach(node)
        self.tree.set_root(target)
        for lower, upper in zip(path, path[1:]):
            self.tree.add_child(lower, upper)

        for j in range(1, len(path)):
            path[j].length, path[j].support = values[j - 1]
        target.length, target.support = values[-1]

        self.logger.info(f"Rerooted tree at {target.name}")
        return self.tree

    def reroot_at_outgroup(self, identifier):
        """
        Root the tree on the branch above a node by inserting a new root halfway along it.

        An old root left with a single child is merged into it.
        """
        outgroup = self.tree.find(identifier)
        if outgroup.id == self.tree.root_id:
            raise InvalidArgumentError("The root cannot be used as an outgroup", token=outgroup.name)

        old_root = self.tree.root
        half = None if outgroup.length is None else outgroup.length / 2
        join = self._insert_node_above(outgroup, half)
        self.reroot(join)
        self._merge_single_child(old_root)
        return self.tree

    def midpoint_reroot(self):
        """
        Root the tree halfway along its longest leaf-to-leaf path.

        The first maximal pair in pre-order pair order wins ties. A new node is
        inserted when the midpoint falls inside a branch.
        """
        if not self.tree.has_complete_lengths():
            raise MissingDataError("Midpoint rooting needs a length on every branch")

        leaves = self.tree.leaves()
        if len(leaves) < 2:
            raise InvalidArgumentError("Midpoint rooting needs at least two leaves")

        distances = self.query.all_pair_distances()
        rows, columns = np.triu_indices(len(leaves), k=1)
        best = int(np.argmax(distances.matrix[rows, columns]))
        first, second = leaves[int(rows[best])], leaves[int(columns[best])]
        half = distances.matrix[rows[best], columns[best]] / 2
        self.logger.info(f"Tree diameter {2 * half} between {first.name} and {second.name}")

        depths = self.query.depths()
        join = self.query.lca([first, second])
        start = first if depths[first.id] - depths[join.id] >= half else second

        # Tolerance absorbs summation-order differences between depths and the upward walk
        tolerance = 1e-12 * max(1.0, half)
        travelled = 0.0
        cursor = start
        while True:
            if math.isclose(travelled, half, abs_tol=tolerance):
                target = cursor
                break
            if travelled + cursor.length > half + tolerance:
                target = self._insert_node_above(cursor, half - travelled)
                break
            travelled += cursor.length
            cursor = self.tree.parent(cursor)

        old_root = self.tree.root
        if target.id != old_root.id:
            self.reroot(target)
            self._merge_single_child(old_root)
        return self.tree

    def _insert_node_above(self, node, distance):
        """Split the branch above a node, placing a new node `distance` above it."""
        parent = self.tree.parent(node)
        index = self.tree.detach(node)
        upper = None if node.length is None else node.length - distance
        join = self.tree.new_node(length=upper, support=node.support)
        self.tree.add_child(parent, join, index)
        if node.length is not None:
            node.length = distance
        self.tree.add_child(join, node)
        return join

    def _merge_single_child(self, node):
        if node.id != self.tree.root_id and len(node.child_ids) == 1:
            self.tree.splice(node, inherit_support=True)

    def delete_low_support(self, threshold):
        """
        Collapse internal branches whose support is below a threshold.

        Branches without a support value are never collapsed. The children of a
        collapsed node move up to its parent with the lengths summed.

        Args:
            threshold (float): Cutoff on the scale the supports use, [0, 1]
                               for proportions or [0, 100] for percentages.

        Returns:
            int: Number of collapsed branches.
        """
        supports = [node.support for node in self.tree.preorder() if node.support is not None]
        if threshold < 0 or threshold > 100:
            raise InvalidArgumentError(f"Support threshold out of range: {threshold}", token=threshold)
        if threshold > 1 and supports and max(supports) <= 1:
            raise InvalidArgumentError(f"Support threshold {threshold} exceeds the [0, 1] scale of the "
                                       f"tree's support values", token=threshold)

        collapsed = 0
        for node in list(self.tree.postorder()):
            if node.id == self.tree.root_id or node.is_leaf():
                continue
            if node.support is not None and node.support < threshold:
                self.logger.debug(f"Collapsing node {node.name} with support {node.support}")
                self.tree.splice(node)
                collapsed += 1

        self.logger.info(f"Collapsed {collapsed} branches with support below {threshold}")
        return collapsed

    def delete_otus(self, identifiers):
        """
        Remove leaves, prune internal nodes left empty, and merge single-child chains.

        Returns:
            Tree: The mutated tree.
        """
        if not identifiers:
            raise InvalidArgumentError("No OTUs given for deletion")

        doomed = {}
        for node in self.tree.find_all(identifiers):
            if not node.is_leaf():
                raise InvalidArgumentError(f"{node.name} is not an OTU", token=node.name)
            doomed[node.id] = node
        if len(doomed) >= self.tree.leaf_count:
            raise InvalidArgumentError("Deleting these OTUs would leave an empty tree")

        for node in doomed.values():
            parent = self.tree.parent(node)
            self.tree.remove(node)
            while parent is not None and parent.is_leaf():
                grandparent = self.tree.parent(parent)
                self.tree.remove(parent)
                parent = grandparent

        for node in list(self.tree.postorder()):
            if len(node.child_ids) == 1:
                self.tree.splice(node, inherit_support=True)

        self.logger.info(f"Deleted {len(doomed)} OTUs; {self.tree.leaf_count} remain")
        return self.tree

    def force_bifurcating(self):
        """Randomly resolve every polytomy; new branches have zero length and no support."""
        resolver = PolytomyResolver(self.tree, rng=self.rng)
        resolver.resolve_all_polytomies()
        return self.tree

    def clean_lengths(self):
        for node in self.tree.preorder():
            node.length = None
        self.logger.info("Removed all branch lengths")
        return self.tree

    def clean_support(self):
        for node in self.tree.preorder():
            node.support = None
        self.logger.info("Removed all support values")
        return self.tree

    def label_nodes(self):
        """
        Prefix every label with the node identity as ID_label.

        Unlabeled nodes get ID_ so the new label is never read back as a support.
        """
        for node in list(self.tree.preorder()):
            label = f"{node.id}_" if node.label is None else f"{node.id}_{node.label}"
            self.tree.relabel(node, label)
        return self.tree

    def swap_otu_pairs(self, identifier):
        """One tree per other OTU with the two OTU labels exchanged; see SwapVariants."""
        variants = SwapVariants(self.tree, identifier)
        self.logger.info(f"Prepared {len(variants)} swap variants for {variants.otu.name}")
        return variants
