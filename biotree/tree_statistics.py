#!/usr/bin/env python
"""
Tree Statistics Module - Summary statistics over a tree

Edge-length abundance distribution, consistency indices of binary traits,
lineage-through-time bins, the apTreeshape merge matrix, the sister-pair
matrix and random OTU subsamples.
"""

import logging
from collections import Counter

import numpy as np

from biotree.exceptions import InvalidArgumentError, MissingDataError
from biotree.tree_query import TreeQuery


class TreeStatistics:
    """Computes summary statistics of a tree."""

    def __init__(self, tree, rng=None, config=None):
        """
        Initialize with a tree.

        Args:
            tree (Tree): The tree to summarize.
            rng (numpy.random.Generator, optional): Randomness for random_subsample.
            config (dict, optional): 'seed' for the default generator.
        """
        self.tree = tree
        self.config = config or {}
        self.rng = rng if rng is not None else np.random.default_rng(self.config.get('seed'))
        self.query = TreeQuery(tree)
        self.logger = logging.getLogger(__name__)

    def _require_lengths(self, operation):
        if not self.tree.has_complete_lengths():
            missing = [node.name for node in self.tree.preorder()
                       if node.length is None and node.id != self.tree.root_id]
            raise MissingDataError(f"{operation} needs a length on every branch; "
                                   f"{len(missing)} branch(es) have none", token=missing[0])

    def _leaf_counts(self):
        counts = {}
        for node in self.tree.postorder():
            counts[node.id] = 1 if node.is_leaf() else sum(counts[c] for c in node.child_ids)
        return counts

    def edge_length_abundance(self):
        """
        Edge-length abundance distribution (O'Dwyer et al., PNAS 2015).

        Branches are grouped by abundance, the number of leaves they subtend,
        and their lengths summed per group.

        Returns:
            list: (abundance, summed length, fraction of total length) rows,
                  ordered by abundance.
        """
        self._require_lengths("Edge-length abundance distribution")

        counts = self._leaf_counts()
        abundance = {}
        for node in self.tree.preorder():
            if node.id == self.tree.root_id:
                continue
            abundance[counts[node.id]] = abundance.get(counts[node.id], 0.0) + node.length

        total = sum(abundance.values())
        return [(size, length, length / total if total > 0 else None)
                for size, length in sorted(abundance.items())]

    def consistency_index(self, traits):
        """
        Consistency index of every informative site of a binary trait table.

        A site is informative when both states occur on at least two OTUs of the
        tree. Steps are counted with Fitch parsimony (generalized to
        multifurcations by majority counting); OTUs without a record are treated
        as ambiguous.

        Args:
            traits (dict): OTU label -> string of 0/1 states.

        Returns:
            list: (site, steps, ci) rows with 1-based site numbers and
                  ci = (number of states - 1) / steps.
        """
        if not traits:
            raise InvalidArgumentError("Empty trait table")

        leaf_labels = {leaf.label for leaf in self.tree.leaves()}
        present = {label: states for label, states in traits.items() if label in leaf_labels}
        absent = len(traits) - len(present)
        if absent:
            self.logger.warning(f"{absent} trait records name OTUs that are not in the tree")

        site_count = len(next(iter(traits.values())))
        rows = []
        for site in range(site_count):
            states = {label: values[site] for label, values in present.items()}
            tally = Counter(states.values())
            if tally['0'] < 2 or tally['1'] < 2:
                self.logger.debug(f"Site {site + 1} is not informative")
                continue
            steps = self._fitch_steps(states)
            rows.append((site + 1, steps, (len(tally) - 1) / steps))

        self.logger.info(f"{len(rows)} of {site_count} sites are informative")
        return rows

    def _fitch_steps(self, states):
        state_sets = {}
        steps = 0
        for node in self.tree.postorder():
            if node.is_leaf():
                state = states.get(node.label)
                state_sets[node.id] = {state} if state is not None else {'0', '1'}
                continue

            tally = Counter()
            for child_id in node.child_ids:
                tally.update(state_sets.pop(child_id))
            best = max(tally.values())
            state_sets[node.id] = {state for state, count in tally.items() if count == best}
            steps += len(node.child_ids) - best
        return steps

    def lineage_through_time(self, bins):
        """
        Count branches alive in equal-width height bins.

        The root-to-tip height is cut into `bins` intervals [floor, ceiling). A
        branch spans [depth of its parent, depth of its node] and is counted in
        every bin it overlaps.

        Returns:
            list: (bin, count, floor, ceiling) rows, bins numbered from 1.
        """
        if not isinstance(bins, (int, np.integer)) or bins < 1:
            raise InvalidArgumentError(f"Number of bins must be a positive integer: {bins}", token=bins)
        self._require_lengths("Lineage-through-time")

        depths = self.query.depths()
        height = max(depths[leaf.id] for leaf in self.tree.leaves())
        width = height / bins
        spans = [(depths[node.parent_id], depths[node.id])
                 for node in self.tree.preorder() if node.parent_id is not None]

        rows = []
        for i in range(bins):
            floor = i * width
            ceiling = height if i == bins - 1 else (i + 1) * width
            count = sum(1 for start, end in spans if start < ceiling and end > floor)
            rows.append((i + 1, count, floor, ceiling))
        return rows

    def tree_shape(self):
        """
        Merge matrix in the layout of the apTreeshape R package.

        Leaves are numbered -1..-n in pre-order; internal nodes get the 1-based
        number of their row. Rows follow post-order so every row only refers to
        earlier rows.

        Returns:
            list: (row, first child, second child) per internal node.
        """
        numbers = {leaf.id: -(i + 1) for i, leaf in enumerate(self.tree.leaves())}
        rows = []
        for node in self.tree.postorder():
            if node.is_leaf():
                continue
            if len(node.child_ids) != 2:
                raise InvalidArgumentError(f"Tree shape needs a bifurcating tree; node {node.name} has "
                                           f"{len(node.child_ids)} children", token=node.name)
            numbers[node.id] = len(rows) + 1
            rows.append((len(rows) + 1, numbers[node.child_ids[0]], numbers[node.child_ids[1]]))
        return rows

    def sister_pairs(self):
        """
        Leaf x leaf sister matrix.

        Entry (i, j) is 1 when the common ancestor of i and j subtends exactly
        those two leaves, else 0. The diagonal is meaningless and left 0.

        Returns:
            tuple: (labels in pre-order, numpy int matrix)
        """
        leaves = self.tree.leaves()
        index = {leaf.id: i for i, leaf in enumerate(leaves)}
        matrix = np.zeros((len(leaves), len(leaves)), dtype=int)

        below = {}
        for node in self.tree.postorder():
            if node.is_leaf():
                below[node.id] = [index[node.id]]
                continue
            below[node.id] = [i for child_id in node.child_ids for i in below.pop(child_id)]
            if len(node.child_ids) >= 2 and len(below[node.id]) == 2:
                first, second = below[node.id]
                matrix[first, second] = matrix[second, first] = 1

        return [leaf.name for leaf in leaves], matrix

    def random_subsample(self, size):
        """
        Induced subtree of a uniform random sample of OTUs, drawn without replacement.

        Returns:
            Tree: A new tree; the original is untouched.
        """
        leaves = self.tree.leaves()
        if size < 1 or size > len(leaves):
            raise InvalidArgumentError(f"Sample size {size} outside 1..{len(leaves)}", token=size)

        picks = sorted(int(i) for i in self.rng.choice(len(leaves), size=size, replace=False))
        self.logger.info(f"Sampled {size} of {len(leaves)} OTUs")
        return self.query.subset([leaves[i] for i in picks])
