#!/usr/bin/env python
"""
Unit tests for the tree_statistics module.
"""

import logging
import pytest
import numpy as np
from pathlib import Path

# Import the module to test
from biotree.exceptions import InvalidArgumentError, MissingDataError
from biotree.tree_parser import TreeParser
from biotree.tree_statistics import TreeStatistics

# Set up logging
logging.basicConfig(level=logging.ERROR)


# Fixtures
@pytest.fixture
def data_dir():
    """Path to test data directory."""
    return Path(__file__).parent / "data"


@pytest.fixture
def parser():
    return TreeParser()


@pytest.fixture
def simple_tree(parser):
    return parser.parse_from_string("(A:1,(B:2,C:3)80:4):0;")


@pytest.fixture
def example_tree(parser, data_dir):
    return parser.parse_from_file(str(data_dir / "example_tree.nwk"))


@pytest.fixture
def traits(parser, data_dir):
    return parser.parse_traits_from_file(str(data_dir / "traits.txt"))


# Tests
def test_edge_length_abundance(simple_tree):
    """Test lengths grouped by the number of leaves below each branch."""
    rows = TreeStatistics(simple_tree).edge_length_abundance()

    assert rows == [(1, 6.0, 0.6), (2, 4.0, 0.4)]


def test_edge_length_abundance_fractions(example_tree):
    """Test that the fractions add up to one."""
    rows = TreeStatistics(example_tree).edge_length_abundance()

    assert [row[0] for row in rows] == [1, 2, 3]
    assert sum(row[2] for row in rows) == pytest.approx(1.0)
    assert sum(row[1] for row in rows) == pytest.approx(example_tree.total_length())


def test_edge_length_abundance_missing_lengths(parser):
    """Test that every branch needs a length."""
    tree = parser.parse_from_string("(A:1,(B,C:3):4);")
    with pytest.raises(MissingDataError):
        TreeStatistics(tree).edge_length_abundance()


def test_consistency_index(example_tree, traits):
    """Test steps and consistency index of the informative sites."""
    rows = TreeStatistics(example_tree).consistency_index(traits)

    # Site 4 has a single 1 and is not informative
    assert [row[:2] for row in rows] == [(1, 1), (2, 1), (3, 3)]
    assert rows[0][2] == 1.0
    assert rows[1][2] == 1.0
    assert rows[2][2] == pytest.approx(1 / 3)


def test_consistency_index_empty_table(example_tree):
    """Test that an empty trait table is refused."""
    with pytest.raises(InvalidArgumentError):
        TreeStatistics(example_tree).consistency_index({})


def test_lineage_through_time(simple_tree):
    """Test branch counts in equal-width height bins."""
    rows = TreeStatistics(simple_tree).lineage_through_time(7)

    assert [row[1] for row in rows] == [2, 1, 1, 1, 2, 2, 1]
    assert [row[0] for row in rows] == [1, 2, 3, 4, 5, 6, 7]
    assert rows[0][2] == 0.0
    assert rows[-1][3] == 7.0


def test_lineage_through_time_single_bin(simple_tree):
    """Test that one bin holds every branch."""
    assert TreeStatistics(simple_tree).lineage_through_time(1) == [(1, 4, 0.0, 7.0)]


@pytest.mark.parametrize("bins", [0, -3, 2.5])
def test_lineage_through_time_invalid_bins(simple_tree, bins):
    """Test that the number of bins must be a positive integer."""
    with pytest.raises(InvalidArgumentError):
        TreeStatistics(simple_tree).lineage_through_time(bins)


def test_tree_shape(parser):
    """Test the merge matrix of a small bifurcating tree."""
    tree = parser.parse_from_string("((A:1,B:1):1,C:2);")
    assert TreeStatistics(tree).tree_shape() == [(1, -1, -2), (2, 1, -3)]


def test_tree_shape_references_earlier_rows(parser):
    """Test that every row refers only to leaves or earlier rows."""
    tree = parser.parse_from_string("(((A,B),(C,D)),(E,(F,G)));")
    rows = TreeStatistics(tree).tree_shape()

    assert len(rows) == 6
    for row, first, second in rows:
        assert first < row and second < row
    leaves = sorted(value for _, first, second in rows for value in (first, second) if value < 0)
    assert leaves == [-7, -6, -5, -4, -3, -2, -1]


def test_tree_shape_polytomy(parser):
    """Test that a multifurcating tree is refused."""
    tree = parser.parse_from_string("(A,B,C);")
    with pytest.raises(InvalidArgumentError):
        TreeStatistics(tree).tree_shape()


def test_sister_pairs(example_tree):
    """Test the leaf x leaf sister matrix."""
    labels, matrix = TreeStatistics(example_tree).sister_pairs()

    assert labels == ['Human', 'Chimp', 'Gorilla', 'Orangutan', 'Gibbon', 'Macaque']
    assert matrix.sum() == 4
    assert matrix[0, 1] == matrix[1, 0] == 1
    assert matrix[3, 4] == matrix[4, 3] == 1
    assert (matrix == matrix.T).all()


def test_random_subsample(example_tree):
    """Test that a sample keeps the requested number of OTUs."""
    labels = {leaf.label for leaf in example_tree.leaves()}
    tree = TreeStatistics(example_tree, rng=np.random.default_rng(5)).random_subsample(3)

    sampled = [leaf.label for leaf in tree.leaves()]
    assert len(sampled) == 3
    assert set(sampled) <= labels
    assert example_tree.leaf_count == 6


def test_random_subsample_seeded(example_tree):
    """Test that the same seed draws the same OTUs."""
    first = TreeStatistics(example_tree, config={'seed': 9}).random_subsample(4)
    second = TreeStatistics(example_tree, config={'seed': 9}).random_subsample(4)

    assert [leaf.label for leaf in first.leaves()] == [leaf.label for leaf in second.leaves()]


@pytest.mark.parametrize("size", [0, 7])
def test_random_subsample_invalid_size(example_tree, size):
    """Test sample sizes outside 1..number of OTUs."""
    with pytest.raises(InvalidArgumentError):
        TreeStatistics(example_tree).random_subsample(size)
