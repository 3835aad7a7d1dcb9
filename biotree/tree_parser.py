#!/usr/bin/env python
"""
Tree Parser Module - Parses serialized trees into the arena tree model

Newick, NHX and NEXUS text is read with DendroPy and converted node by node.
NHX and BEAST style comments arrive as DendroPy annotations; recognized keys
override support and branch length, the rest is kept as node metadata. The
module also reads the binary trait tables used by the consistency index.
"""

import os
import re
import sys
import logging
import dendropy

from biotree.exceptions import FormatError
from biotree.tree_model import Tree

SCHEMAS = ('newick', 'nhx', 'nexus')

DEFAULT_SUPPORT_KEYS = ('B', 'bootstrap', 'support', 'posterior')
DEFAULT_LENGTH_KEYS = ('length', 'branch_length', 'BL')

# DendroPy's Newick reader descends one call per nesting level
DEFAULT_RECURSION_LIMIT = 100000

NUMBER_PATTERN = re.compile(r'^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$')

DISALLOWED_LABEL_CHARACTERS = set('()[]:;,')


def parse_number(token, what):
    """Convert a numeric token, raising FormatError when it is not a plain number."""
    if token is None or not NUMBER_PATTERN.match(token):
        raise FormatError(f"Non-numeric {what}: {token!r}", token=token)
    return float(token)


def annotation_text(value):
    """Render a DendroPy annotation value the way it appeared in the comment."""
    if isinstance(value, (list, tuple)):
        return '{' + ','.join(str(item) for item in value) + '}'
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


class TreeParser:
    """Parses Newick, NHX and NEXUS trees into biotree Tree objects."""

    def __init__(self, config=None):
        """
        Initialize the tree parser.

        Args:
            config (dict, optional): Configuration dictionary. Recognized keys are
                                     'schema' (default input format), 'support_keys'
                                     and 'length_keys' (comment keys that override
                                     support and length), 'recursion_limit' (stack
                                     depth allowed while reading deep trees) and
                                     'newick' / 'nexus' (extra DendroPy reader
                                     arguments).
        """
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

        self.schema = self.config.get('schema', 'newick')
        self.support_keys = tuple(self.config.get('support_keys', DEFAULT_SUPPORT_KEYS))
        self.length_keys = tuple(self.config.get('length_keys', DEFAULT_LENGTH_KEYS))
        self.recursion_limit = self.config.get('recursion_limit', DEFAULT_RECURSION_LIMIT)
        self.logger.debug(f"Tree parser initialized with schema={self.schema}")

    def parse_from_file(self, filepath, schema=None):
        """
        Parse a tree from a file path.

        Args:
            filepath (str): Path to the tree file.
            schema (str, optional): 'newick', 'nhx' or 'nexus'; defaults to the configured schema.

        Returns:
            Tree: The parsed tree.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            FormatError: If the file cannot be parsed.
        """
        if not os.path.exists(filepath):
            raise FileNotFoundError(f"Tree file not found: {filepath}")

        self.logger.info(f"Parsing tree from file: {filepath}")
        with open(filepath, 'r') as handle:
            return self.parse_from_string(handle.read(), schema=schema)

    def parse_from_string(self, tree_string, schema=None):
        """
        Parse the first tree of a string.

        Args:
            tree_string (str): Serialized tree.
            schema (str, optional): 'newick', 'nhx' or 'nexus'; defaults to the configured schema.

        Returns:
            Tree: The parsed tree.

        Raises:
            FormatError: If the string cannot be parsed.
        """
        schema = (schema or self.schema).lower()
        if schema not in SCHEMAS:
            raise FormatError(f"Unsupported tree format: {schema}", token=schema)
        if tree_string is None or not tree_string.strip():
            raise FormatError("Empty tree input")

        # NHX is Newick with metadata comments
        dendropy_schema = 'nexus' if schema == 'nexus' else 'newick'
        trees = self._read_trees(tree_string, dendropy_schema)
        if len(trees) == 0:
            raise FormatError("No tree found in input")
        if len(trees) > 1:
            self.logger.warning(f"Input holds {len(trees)} trees; only the first one is used")

        tree = self.parse_dendropy(trees[0])
        self._log_tree_stats(tree)
        return tree

    def parse_dendropy(self, dendropy_tree):
        """
        Convert a DendroPy tree into a biotree Tree.

        Leaf labels come from taxa, internal labels from node labels. A numeric
        internal label is read as a support value. Node annotations are applied
        last, so a recognized comment key overrides the label or the length.

        Args:
            dendropy_tree (dendropy.Tree): The tree to convert.

        Returns:
            Tree: The converted tree.

        Raises:
            FormatError: On a negative branch length, a label with disallowed
                         characters, or a non-numeric support or length value.
        """
        tree = Tree()
        mapping = {}
        for dnode in dendropy_tree.preorder_node_iter():
            if dnode.taxon is not None:
                label = dnode.taxon.label
            else:
                label = dnode.label

            if label is not None and DISALLOWED_LABEL_CHARACTERS & set(label):
                raise FormatError(f"Label with disallowed characters: {label!r}", token=label)

            length = dnode.edge.length
            if length is not None and length < 0:
                raise FormatError(f"Negative branch length for {label or 'unlabeled node'}: {length}",
                                  token=str(length))

            node = tree.new_node(length=length)
            if not dnode.is_leaf() and label is not None and NUMBER_PATTERN.match(label):
                node.support = float(label)
            else:
                node.label = label

            for annotation in dnode.annotations:
                self._apply_annotation(node, annotation.name, annotation_text(annotation.value))

            if dnode.parent_node is None:
                tree.set_root(node)
            else:
                tree.add_child(mapping[id(dnode.parent_node)], node)
            mapping[id(dnode)] = node.id

        return tree

    def parse_traits_from_file(self, filepath):
        """Read a binary trait table from a file. See parse_traits_from_string."""
        if not os.path.exists(filepath):
            raise FileNotFoundError(f"Trait file not found: {filepath}")

        self.logger.info(f"Parsing trait table from file: {filepath}")
        with open(filepath, 'r') as handle:
            return self.parse_traits_from_string(handle.read())

    def parse_traits_from_string(self, text):
        """
        Read a binary trait table.

        Each record is an OTU label followed by its 0/1 states, one per site.
        States may be written contiguously ("0110") or whitespace separated.
        Blank lines and lines starting with '#' are skipped.

        Returns:
            dict: OTU label -> string of states.

        Raises:
            FormatError: On a record without states, a state other than 0/1, a
                         repeated label, or records with differing site counts.
        """
        traits = {}
        site_count = None
        for line_number, line in enumerate(text.splitlines(), start=1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue

            fields = line.split()
            if len(fields) < 2:
                raise FormatError(f"Trait record without states on line {line_number}: {line!r}", token=line)

            label, states = fields[0], ''.join(fields[1:])
            if set(states) - {'0', '1'}:
                raise FormatError(f"Non-binary trait state for {label} on line {line_number}: {states!r}",
                                  token=states)
            if label in traits:
                raise FormatError(f"Duplicate trait record for {label} on line {line_number}", token=label)
            if site_count is not None and len(states) != site_count:
                raise FormatError(f"Trait record for {label} has {len(states)} sites, expected {site_count}",
                                  token=label)

            site_count = len(states)
            traits[label] = states

        self.logger.info(f"Read {len(traits)} trait records with {site_count or 0} sites")
        return traits

    def _read_trees(self, tree_string, schema):
        """Read every tree statement through DendroPy."""
        limit = sys.getrecursionlimit()
        sys.setrecursionlimit(max(limit, self.recursion_limit))
        try:
            return dendropy.TreeList.get(
                data=tree_string,
                schema=schema,
                **self._get_schema_kwargs(schema)
            )
        except Exception as e:
            self.logger.error(f"Failed to parse {schema.upper()} tree: {str(e)}")
            raise FormatError(f"Could not parse {schema.upper()} tree: {str(e)}") from e
        finally:
            sys.setrecursionlimit(limit)

    def _get_schema_kwargs(self, schema='newick'):
        """
        Get DendroPy reader arguments.

        Args:
            schema (str): 'newick' or 'nexus'.

        Returns:
            dict: Schema-specific keyword arguments.
        """
        schema_kwargs = {
            'preserve_underscores': True,
            'suppress_internal_node_taxa': True,
            'suppress_leaf_node_taxa': False,
            'case_sensitive_taxon_labels': True,
            'extract_comment_metadata': True,
        }

        # Add any schema-specific settings from config
        if schema in self.config:
            schema_kwargs.update(self.config[schema])

        return schema_kwargs

    def _apply_annotation(self, node, key, value):
        """
        Apply one key=value pair read from an NHX or BEAST comment.

        Support keys set the support, length keys override the branch length;
        any other key is kept in the node metadata.
        """
        if key in self.support_keys:
            node.support = parse_number(value, f"support value for {key}")
        elif key in self.length_keys:
            length = parse_number(value, f"branch length for {key}")
            if length < 0:
                raise FormatError(f"Negative branch length for {key}: {value}", token=value)
            node.length = length
        else:
            node.metadata[key] = value

    def _log_tree_stats(self, tree):
        """Log statistics about the parsed tree."""
        num_tips = tree.leaf_count
        num_internal = len(tree.internal_nodes())
        self.logger.info(f"Tree parsed successfully with {num_tips} tips and {num_internal} internal nodes")
