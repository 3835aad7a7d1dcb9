#!/usr/bin/env python
"""
Unit tests for the tree_query module.

These tests verify depths, common ancestors, distances, the leaf walk and
induced subtrees on a small primate tree.
"""

import itertools
import logging
import pytest
from pathlib import Path

# Import the module to test
from biotree.exceptions import InvalidArgumentError, NotFoundError
from biotree.tree_parser import TreeParser
from biotree.tree_query import TreeQuery
from biotree.tree_writer import TreeWriter

# Set up logging
logging.basicConfig(level=logging.ERROR)


# Fixtures
@pytest.fixture
def data_dir():
    """Path to test data directory."""
    return Path(__file__).parent / "data"


@pytest.fixture
def example_tree(data_dir):
    """Parse the example tree."""
    return TreeParser().parse_from_file(str(data_dir / "example_tree.nwk"))


@pytest.fixture
def query(example_tree):
    return TreeQuery(example_tree)


@pytest.fixture
def writer():
    return TreeWriter()


# Tests
def test_depth(query):
    """Test depth as the sum of lengths up to the root."""
    assert query.depth('Gibbon') == pytest.approx(0.47)
    assert query.depth('Macaque') == pytest.approx(0.5)
    assert query.depth('0') == 0.0


def test_distance(query):
    """Test the path length between two leaves."""
    assert query.distance('Human', 'Gibbon') == pytest.approx(0.62)
    assert query.distance('Human', 'Chimp') == pytest.approx(0.22)
    assert query.distance('Human', 'Human') == 0.0


def test_distance_unknown_node(query):
    """Test that an unknown name raises NotFoundError."""
    with pytest.raises(NotFoundError):
        query.distance('Human', 'Bonobo')


def test_distance_missing_lengths():
    """Test that missing lengths count as zero and mark the path incomplete."""
    tree = TreeParser().parse_from_string("(A,(B:2,C:3):4);")
    query = TreeQuery(tree)

    assert query.distance('A', 'B') == pytest.approx(6.0)
    assert not query.path_is_complete('A', 'B')
    assert query.path_is_complete('B', 'C')


def test_lca(query):
    """Test lowest common ancestors of leaf sets."""
    assert query.lca(['Human', 'Chimp']).support == 95.0
    assert query.lca(['Orangutan', 'Gibbon', 'Gorilla']).support == 60.0
    assert query.lca(['Human', 'Gibbon']).id == 0


def test_lca_single_node_is_parent(query):
    """Test that a single node yields its direct parent."""
    assert query.lca(['Human']).support == 95.0
    assert query.lca(['Human', 'Human']).support == 95.0


def test_lca_invalid(query):
    """Test an empty list and the root alone."""
    with pytest.raises(InvalidArgumentError):
        query.lca([])
    with pytest.raises(InvalidArgumentError):
        query.lca(['0'])


def test_all_pair_distances_match_pairwise(query, example_tree):
    """Test that the one-pass matrix agrees with pairwise path lengths."""
    distances = query.all_pair_distances()
    labels = [leaf.label for leaf in example_tree.leaves()]

    assert distances.labels == labels
    assert not distances.unitless
    for first, second in itertools.combinations(labels, 2):
        expected = query.distance(first, second)
        assert distances.distance(first, second) == pytest.approx(expected)
        assert distances.distance(second, first) == pytest.approx(expected)
    for label in labels:
        assert distances.distance(label, label) == 0.0


def test_distance_report(query):
    """Test the half matrix report."""
    report = query.all_pair_distances().to_report()

    assert report.title == 'dist-all'
    assert len(report.rows) == 15
    assert report.rows[0][:2] == ('Human', 'Chimp')
    assert report.rows[0][2] == pytest.approx(0.22)
    assert report.notes == ()


def test_walk():
    """Test the walk order and the travelled and direct distances."""
    tree = TreeParser().parse_from_string("(A:1,(B:2,C:3)80:4):0;")
    assert TreeQuery(tree).walk('A') == [('B', 7.0, 7.0), ('C', 10.0, 8.0)]


def test_walk_visits_every_leaf_once(query, example_tree):
    """Test that the walk reaches each other leaf exactly once."""
    rows = query.walk('Gibbon')
    names = [row[0] for row in rows]

    assert sorted(names) == sorted(leaf.label for leaf in example_tree.leaves() if leaf.label != 'Gibbon')
    assert names[0] == 'Orangutan'
    # Travelled length never decreases and ends at the total tree length
    travelled = [row[1] for row in rows]
    assert travelled == sorted(travelled)
    assert travelled[-1] == pytest.approx(example_tree.total_length())


def test_walk_from_internal_node(query):
    """Test that a walk must start at a leaf."""
    with pytest.raises(InvalidArgumentError):
        query.walk('1')


def test_subset_below_root(query, writer):
    """Test the induced subtree of a clade below the root."""
    tree = query.subset(['Orangutan', 'Gibbon'])
    assert writer.write_to_string(tree) == "(Orangutan:0.3,Gibbon:0.35);\n"


def test_subset_merges_single_child_nodes(query, writer, example_tree):
    """Test that connecting nodes left with one child are merged."""
    tree = query.subset(['Human', 'Gorilla', 'Macaque'])

    assert [leaf.label for leaf in tree.leaves()] == ['Human', 'Gorilla', 'Macaque']
    assert tree.find('Human').length == pytest.approx(0.15)
    assert tree.find('Gorilla').length == pytest.approx(0.22)
    assert tree.root.length == 0.0
    # The original is untouched
    assert example_tree.leaf_count == 6


def test_subset_internal_node(query):
    """Test that naming an internal node keeps its whole clade."""
    tree = query.subset(['4'])
    assert [leaf.label for leaf in tree.leaves()] == ['Gorilla', 'Orangutan', 'Gibbon']


def test_subset_invalid(query):
    """Test subset with no nodes and with an unknown node."""
    with pytest.raises(InvalidArgumentError):
        query.subset([])
    with pytest.raises(NotFoundError):
        query.subset(['Human', 'Bonobo'])


def test_otus(query):
    """Test OTU listings."""
    assert query.otu_count() == 6
    assert query.otus()[0] == ('Human', 0.1)
    assert query.otus_desc('4') == ['Gorilla', 'Orangutan', 'Gibbon']


def test_otus_desc_all(query):
    """Test the leaves below every internal node."""
    rows = query.otus_desc_all()

    assert [name for name, _ in rows] == ['0', '1', '4', '6']
    assert rows[1][1] == ['Human', 'Chimp']
    assert len(rows[0][1]) == 6


def test_lengths(query):
    """Test total length and the per-node listing."""
    assert query.total_length() == pytest.approx(1.74)
    rows = query.all_lengths()
    assert rows[0] == (0, None, 0.0)
    assert rows[2] == (2, 'Human', 0.1)
