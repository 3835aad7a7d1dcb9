#!/usr/bin/env python
"""
Polytomy Resolver Module - Randomly resolves polytomies into binary splits

Children of a polytomy are joined two at a time, picked at random, under new
zero-length nodes until the polytomy is bifurcating. The random generator is
injected so that a fixed seed gives a fixed topology.
"""

import logging
import numpy as np


class PolytomyResolver:
    """Resolves polytomies by random pairwise joining."""

    def __init__(self, tree, rng=None, config=None):
        """
        Initialize with a tree and an optional random generator.

        Args:
            tree (Tree): The tree containing polytomies to resolve.
            rng (numpy.random.Generator, optional): Source of randomness. Built
                                                    from config['seed'] if omitted.
            config (dict, optional): 'seed' for the default generator.
        """
        self.tree = tree
        self.config = config or {}
        self.rng = rng if rng is not None else np.random.default_rng(self.config.get('seed'))
        self.logger = logging.getLogger(__name__)

    def resolve_all_polytomies(self):
        """
        Resolve every polytomy in the tree.

        Returns:
            int: Number of new internal nodes created.
        """
        polytomies = self.find_polytomies()

        joins = 0
        for polytomy in polytomies:
            joins += self.resolve_polytomy(polytomy)

        self.logger.info(f"Resolved {len(polytomies)} polytomies with {joins} new internal nodes")
        return joins

    def find_polytomies(self):
        """
        Find the nodes with more than two children.

        Returns:
            list: Polytomy nodes, deepest first; nodes at equal depth keep pre-order.
        """
        depths = {}
        polytomies = []
        for node in self.tree.preorder():
            depths[node.id] = 0 if node.parent_id is None else depths[node.parent_id] + 1
            if len(node.child_ids) > 2:
                polytomies.append(node)

        polytomies.sort(key=lambda node: -depths[node.id])
        self.logger.debug(f"Found {len(polytomies)} polytomies")
        return polytomies

    def resolve_polytomy(self, polytomy):
        """
        Resolve one polytomy node into binary splits.

        :param polytomy: The polytomy node to resolve.
        :return: Number of new internal nodes created; 0 if the node is not a polytomy.
        """

        # Nothing to be done if focal node is None, a leaf, or already bifurcating
        if polytomy is None or polytomy.is_leaf() or len(polytomy.child_ids) < 3:
            return 0

        self.logger.debug(f"Resolving polytomy {polytomy.name} with {len(polytomy.child_ids)} children")

        joins = 0
        while len(polytomy.child_ids) > 2:
            first, second = sorted(int(i) for i in self.rng.choice(len(polytomy.child_ids), size=2, replace=False))
            first_id = polytomy.child_ids[first]
            second_id = polytomy.child_ids[second]

            # Detach the later child first so the earlier index stays valid
            self.tree.detach(second_id)
            index = self.tree.detach(first_id)

            join = self.tree.new_node(length=0.0)
            self.tree.add_child(polytomy, join, index)
            self.tree.add_child(join, first_id)
            self.tree.add_child(join, second_id)
            joins += 1

        return joins
