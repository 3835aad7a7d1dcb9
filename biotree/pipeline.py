#!/usr/bin/env python
"""
Tree Manipulation Pipeline - Main orchestration module

Builds a tree from serialized input, applies exactly one operation, and
renders the resulting tree, tree sequence or report. The module level
functions build_tree, apply and render are the engine's boundary to a
command-line layer.
"""

import time
import logging
from collections import namedtuple

import numpy as np

from biotree.exceptions import EngineError, FormatError, InvalidArgumentError
from biotree.reports import Report, UNITLESS_NOTE
from biotree.tree_mutator import TreeMutator
from biotree.tree_parser import TreeParser
from biotree.tree_query import TreeQuery
from biotree.tree_statistics import TreeStatistics
from biotree.tree_writer import TreeWriter

OperationSpec = namedtuple('OperationSpec', ['name', 'params'], defaults=(None,))


class TreeManipulationPipeline:
    """Orchestrates parse, one operation, and render."""

    def __init__(self, config=None, rng=None):
        """
        Initialize with optional configuration.

        Args:
            config (dict, optional): Sections 'parser', 'writer' and 'random'
                                     ('seed') passed on to the components.
            rng (numpy.random.Generator, optional): Randomness for force-bifurcating
                                                    and random subsampling.
        """
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

        self.parser = TreeParser(config=self.config.get('parser', {}))
        self.writer = TreeWriter(config=self.config.get('writer', {}))
        self.rng = rng if rng is not None else np.random.default_rng(self.config.get('random', {}).get('seed'))

        self.operations = {
            'length': self._total_length,
            'length-all': self._all_lengths,
            'otus-all': self._otus,
            'otus-num': self._otu_count,
            'otus-desc': self._otus_desc,
            'depth': self._depth,
            'dist': self._distance,
            'dist-all': self._all_distances,
            'lca': self._lca,
            'walk': self._walk,
            'subset': self._subset,
            'reroot': self._reroot,
            'outgroup': self._outgroup,
            'mid-point': self._midpoint,
            'del-low-boot': self._delete_low_support,
            'del-otus': self._delete_otus,
            'multi2bi': self._force_bifurcating,
            'clean-br': self._clean_lengths,
            'clean-boot': self._clean_support,
            'label-nodes': self._label_nodes,
            'label-internal': self._label_internal,
            'swap-otus': self._swap_otus,
            'ead': self._edge_length_abundance,
            'ci': self._consistency_index,
            'ltt': self._lineage_through_time,
            'tree-shape': self._tree_shape,
            'sis-pairs': self._sister_pairs,
            'random': self._random_subsample,
        }

        # Track execution stats
        self.stats = {
            'operation': None,
            'elapsed_time': None,
            'tree_size': None,
        }

    def build_tree(self, data, schema=None):
        """
        Parse serialized input into a tree.

        Args:
            data (bytes or str): Serialized tree.
            schema (str, optional): Input format; defaults to the parser configuration.

        Returns:
            Tree: The parsed tree.
        """
        if isinstance(data, bytes):
            try:
                data = data.decode('utf-8')
            except UnicodeDecodeError as e:
                raise FormatError(f"Tree input is not valid UTF-8: {e}") from e

        tree = self.parser.parse_from_string(data, schema=schema)
        self.stats['tree_size'] = tree.leaf_count
        return tree

    def apply(self, tree, operation):
        """
        Apply one operation to a tree.

        Args:
            tree (Tree): The tree; mutating operations change it in place.
            operation (OperationSpec): Operation name and parameters.

        Returns:
            Tree, Report or SwapVariants: The operation result.

        Raises:
            InvalidArgumentError: For an unknown operation.
            EngineError: Whatever the operation raises.
        """
        if operation.name not in self.operations:
            raise InvalidArgumentError(f"Unknown operation: {operation.name}", token=operation.name)

        params = operation.params or {}
        self.logger.info(f"Applying {operation.name} to a tree with {tree.leaf_count} OTUs")
        self.stats['operation'] = operation.name
        start_time = time.time()

        try:
            result = self.operations[operation.name](tree, params)
        except EngineError as e:
            self.logger.error(f"{operation.name} failed: {e.message}")
            raise

        self.stats['elapsed_time'] = time.time() - start_time
        self.logger.info(f"{operation.name} completed in {self.stats['elapsed_time']:.3f} seconds")
        return result

    def render(self, result, schema=None):
        """Render a tree, tree sequence or report to UTF-8 bytes."""
        return self.writer.render(result, schema=schema).encode('utf-8')

    # Queries

    def _total_length(self, tree, params):
        unitless = not tree.has_complete_lengths()
        return self._report('length', ['total_length'], [(tree.total_length(),)], unitless)

    def _all_lengths(self, tree, params):
        return Report('length-all', ['id', 'label', 'length'], TreeQuery(tree).all_lengths())

    def _otus(self, tree, params):
        return Report('otus-all', ['otu', 'length'], TreeQuery(tree).otus())

    def _otu_count(self, tree, params):
        return Report('otus-num', ['otus'], [(tree.leaf_count,)])

    def _otus_desc(self, tree, params):
        query = TreeQuery(tree)
        node = params.get('node', 'all')
        if node == 'all':
            rows = [(name, ','.join(leaves)) for name, leaves in query.otus_desc_all()]
        else:
            rows = [(tree.find(node).name, ','.join(query.otus_desc(node)))]
        return Report('otus-desc', ['node', 'otus'], rows)

    def _depth(self, tree, params):
        query = TreeQuery(tree)
        node = tree.find(self._require(params, 'node'))
        return self._report('depth', ['node', 'depth'], [(node.name, query.depth(node))],
                            not query.path_is_complete(node))

    def _distance(self, tree, params):
        query = TreeQuery(tree)
        nodes = params.get('nodes') or []
        if len(nodes) != 2:
            raise InvalidArgumentError(f"Distance needs exactly two nodes, got {len(nodes)}")
        first, second = tree.find_all(nodes)
        return self._report('dist', ['node1', 'node2', 'distance'],
                            [(first.name, second.name, query.distance(first, second))],
                            not query.path_is_complete(first, second))

    def _all_distances(self, tree, params):
        return TreeQuery(tree).all_pair_distances().to_report()

    def _lca(self, tree, params):
        node = TreeQuery(tree).lca(params.get('nodes') or [])
        return Report('lca', ['id', 'label', 'support'], [(node.id, node.label, node.support)])

    def _walk(self, tree, params):
        rows = TreeQuery(tree).walk(self._require(params, 'otu'))
        return self._report('walk', ['otu', 'travelled', 'distance'], rows, not tree.has_complete_lengths())

    def _subset(self, tree, params):
        return TreeQuery(tree).subset(params.get('nodes') or [])

    # Mutations

    def _mutator(self, tree):
        return TreeMutator(tree, rng=self.rng)

    def _reroot(self, tree, params):
        return self._mutator(tree).reroot(self._require(params, 'node'))

    def _outgroup(self, tree, params):
        return self._mutator(tree).reroot_at_outgroup(self._require(params, 'node'))

    def _midpoint(self, tree, params):
        return self._mutator(tree).midpoint_reroot()

    def _delete_low_support(self, tree, params):
        self._mutator(tree).delete_low_support(self._require(params, 'threshold'))
        return tree

    def _delete_otus(self, tree, params):
        return self._mutator(tree).delete_otus(params.get('nodes') or [])

    def _force_bifurcating(self, tree, params):
        return self._mutator(tree).force_bifurcating()

    def _clean_lengths(self, tree, params):
        return self._mutator(tree).clean_lengths()

    def _clean_support(self, tree, params):
        return self._mutator(tree).clean_support()

    def _label_nodes(self, tree, params):
        return self._mutator(tree).label_nodes()

    def _label_internal(self, tree, params):
        tree.assign_internal_labels(prefix=params.get('prefix', 'NODE_'))
        return tree

    def _swap_otus(self, tree, params):
        return self._mutator(tree).swap_otu_pairs(self._require(params, 'otu'))

    # Statistics

    def _statistics(self, tree):
        return TreeStatistics(tree, rng=self.rng)

    def _edge_length_abundance(self, tree, params):
        return Report('ead', ['abundance', 'length', 'fraction'], self._statistics(tree).edge_length_abundance())

    def _consistency_index(self, tree, params):
        traits = params.get('traits')
        if traits is None:
            traits = self.parser.parse_traits_from_file(self._require(params, 'trait_file'))
        elif isinstance(traits, str):
            traits = self.parser.parse_traits_from_string(traits)
        return Report('ci', ['site', 'steps', 'ci'], self._statistics(tree).consistency_index(traits))

    def _lineage_through_time(self, tree, params):
        rows = self._statistics(tree).lineage_through_time(self._require(params, 'bins'))
        return Report('ltt', ['bin', 'count', 'floor', 'ceiling'], rows)

    def _tree_shape(self, tree, params):
        return Report('tree-shape', ['row', 'first', 'second'], self._statistics(tree).tree_shape())

    def _sister_pairs(self, tree, params):
        labels, matrix = self._statistics(tree).sister_pairs()
        rows = []
        for i, label in enumerate(labels):
            rows.append([label] + [None if i == j else int(matrix[i, j]) for j in range(len(labels))])
        return Report('sis-pairs', ['otu'] + labels, rows)

    def _random_subsample(self, tree, params):
        return self._statistics(tree).random_subsample(self._require(params, 'size'))

    def _require(self, params, key):
        if params.get(key) is None:
            raise InvalidArgumentError(f"Missing parameter: {key}", token=key)
        return params[key]

    def _report(self, title, columns, rows, unitless):
        notes = (UNITLESS_NOTE,) if unitless else ()
        return Report(title, columns, rows, unitless, notes)


def build_tree(data, schema=None, config=None):
    """Parse serialized input into a tree; the format defaults to config['parser']['schema']."""
    return TreeManipulationPipeline(config=config).build_tree(data, schema=schema)


def apply(tree, operation, config=None, rng=None):
    """Apply one OperationSpec to a tree."""
    return TreeManipulationPipeline(config=config, rng=rng).apply(tree, operation)


def render(result, schema=None, config=None):
    """Render a tree, tree sequence or report to bytes; the format defaults to config['writer']['schema']."""
    return TreeManipulationPipeline(config=config).render(result, schema=schema)
