#!/usr/bin/env python
"""
Unit tests for the polytomy_resolver module.

These tests verify that the PolytomyResolver turns every polytomy into
binary splits under zero-length nodes, keeps the leaf set, and gives a fixed
topology for a fixed seed.
"""

import pytest
import logging
import numpy as np

# Import modules to test
from biotree.tree_parser import TreeParser
from biotree.tree_writer import TreeWriter
from biotree.polytomy_resolver import PolytomyResolver

# Set up logging
logging.basicConfig(level=logging.ERROR)


# Fixtures
@pytest.fixture
def polytomy_newick():
    return "((A:1,B:1,C:1,D:1)90:2,(E:1,F:1)H:1,(I:1,J:1,K:1)L:1);"


@pytest.fixture
def polytomy_tree(polytomy_newick):
    return TreeParser().parse_from_string(polytomy_newick)


# Tests
def test_find_polytomies(polytomy_tree):
    """Test that polytomies are listed deepest first, ties in pre-order."""
    polytomies = PolytomyResolver(polytomy_tree).find_polytomies()

    assert [node.id for node in polytomies] == [1, polytomy_tree.find('L').id, 0]
    assert polytomy_tree.find('H') not in polytomies


def test_resolve(polytomy_tree):
    """Test that the tree is binary after resolving."""
    resolver = PolytomyResolver(polytomy_tree, rng=np.random.default_rng(1))
    joins = resolver.resolve_all_polytomies()

    # One join per child beyond the second: root 1, first clade 2, L 1
    assert joins == 4
    for node in polytomy_tree.postorder():
        assert len(node.child_ids) in (0, 2)


def test_resolve_keeps_leaves_and_lengths(polytomy_tree):
    """Test that leaves, their lengths and the total length are unchanged."""
    before = sorted((leaf.label, leaf.length) for leaf in polytomy_tree.leaves())
    total = polytomy_tree.total_length()

    PolytomyResolver(polytomy_tree, rng=np.random.default_rng(7)).resolve_all_polytomies()

    assert sorted((leaf.label, leaf.length) for leaf in polytomy_tree.leaves()) == before
    assert polytomy_tree.total_length() == pytest.approx(total)


def test_new_nodes_have_zero_length(polytomy_tree):
    """Test that created nodes have length 0.0 and no support or label."""
    existing = {node.id for node in polytomy_tree.preorder()}
    PolytomyResolver(polytomy_tree, rng=np.random.default_rng(3)).resolve_all_polytomies()

    created = [node for node in polytomy_tree.preorder() if node.id not in existing]
    assert len(created) == 4
    for node in created:
        assert node.length == 0.0
        assert node.support is None
        assert node.label is None


def test_fixed_seed_fixed_topology(polytomy_newick):
    """Test that the same seed gives the same resolution."""
    writer = TreeWriter()
    results = set()
    for _ in range(3):
        tree = TreeParser().parse_from_string(polytomy_newick)
        PolytomyResolver(tree, config={'seed': 42}).resolve_all_polytomies()
        results.add(writer.write_to_string(tree))

    assert len(results) == 1


def test_resolve_polytomy_on_bifurcation(polytomy_tree):
    """Test that a bifurcating node or a leaf is left alone."""
    resolver = PolytomyResolver(polytomy_tree, rng=np.random.default_rng(0))

    assert resolver.resolve_polytomy(polytomy_tree.find('H')) == 0
    assert resolver.resolve_polytomy(polytomy_tree.find('A')) == 0
    assert resolver.resolve_polytomy(None) == 0


def test_resolve_single_polytomy(polytomy_tree):
    """Test resolving one node leaves the others untouched."""
    resolver = PolytomyResolver(polytomy_tree, rng=np.random.default_rng(0))
    clade = polytomy_tree.parent(polytomy_tree.find('A'))

    assert resolver.resolve_polytomy(clade) == 2
    assert len(clade.child_ids) == 2
    assert clade.support == 90.0
    assert len(polytomy_tree.find('L').child_ids) == 3
