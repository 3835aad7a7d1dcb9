#!/usr/bin/env python
"""
Tree Writer Module - Serializes trees and renders reports

Trees are converted to DendroPy and written as Newick, NHX or NEXUS by its
writers, or rendered as an indented text tree. Report tables are rendered as
delimited text.
"""

import os
import logging
import dendropy

from biotree.exceptions import FormatError
from biotree.reports import Report

SCHEMAS = ('newick', 'nhx', 'nexus', 'tabtree')


def format_number(value, precision=10):
    """Shortest representation of a number with up to `precision` significant digits."""
    if value is None:
        return ''
    return f"{value:.{precision}g}"


class TreeWriter:
    """Serializes biotree Tree objects and Report tables."""

    def __init__(self, config=None):
        """
        Initialize the writer.

        Args:
            config (dict, optional): 'schema' (default output format), 'precision'
                                     (significant digits for numbers) and
                                     'delimiter' (report field separator).
        """
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

        self.schema = self.config.get('schema', 'newick')
        self.precision = self.config.get('precision', 10)
        self.delimiter = self.config.get('delimiter', '\t')

    def write_to_string(self, tree, schema=None):
        """
        Serialize a tree.

        Args:
            tree (Tree): The tree to write.
            schema (str, optional): 'newick', 'nhx', 'nexus' or 'tabtree'.

        Returns:
            str: The serialized tree, newline terminated.
        """
        schema = (schema or self.schema).lower()
        if schema not in SCHEMAS:
            raise FormatError(f"Unsupported output format: {schema}", token=schema)

        if schema == 'nexus':
            return self.to_dendropy(tree).as_string(schema="nexus")
        if schema == 'tabtree':
            return self.format_text_tree(tree)

        text = self.to_dendropy(tree, nhx=(schema == 'nhx')).as_string(
            schema="newick",
            suppress_rooting=True,
            suppress_annotations=False,
            annotations_as_nhx=True,
            unquoted_underscores=True,
            preserve_spaces=True,
            real_value_format_specifier=f".{self.precision}g",
        )
        return text.strip() + '\n'

    def write_to_file(self, tree, filepath, schema=None):
        """Serialize a tree to a file path."""
        output_dir = os.path.dirname(filepath)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)

        self.logger.info(f"Writing tree to {filepath}")
        with open(filepath, 'w') as handle:
            handle.write(self.write_to_string(tree, schema=schema))

    def text_rows(self, tree):
        """
        Logical rows of a text tree.

        Returns:
            list: (depth, label, length) per node in pre-order, depth counted in edges.
                  Unlabeled internal nodes show their support, if any.
        """
        depths = {}
        rows = []
        for node in tree.preorder():
            depth = 0 if node.parent_id is None else depths[node.parent_id] + 1
            depths[node.id] = depth
            if node.label is not None:
                label = node.label
            elif node.support is not None:
                label = format_number(node.support, self.precision)
            else:
                label = ''
            rows.append((depth, label, node.length))
        return rows

    def format_text_tree(self, tree, indent='  '):
        lines = []
        for depth, label, length in self.text_rows(tree):
            line = indent * depth + label
            if length is not None:
                line += ':' + format_number(length, self.precision)
            lines.append(line)
        return '\n'.join(lines) + '\n'

    def to_dendropy(self, tree, nhx=False):
        """
        Convert a biotree Tree into a DendroPy tree.

        Leaves become taxa; an internal node keeps its label, or its support
        when it has no label. A support that gives way to a label is kept as a
        'B' annotation, so Newick output writes it in an NHX comment.

        Args:
            tree (Tree): The tree to convert.
            nhx (bool): Write every support as a 'B' annotation and add the
                        node metadata as annotations.

        Returns:
            dendropy.Tree: The converted tree.
        """
        taxon_namespace = dendropy.TaxonNamespace()
        dendropy_tree = dendropy.Tree(taxon_namespace=taxon_namespace)
        mapping = {}
        for node in tree.preorder():
            if node.parent_id is None:
                dnode = dendropy_tree.seed_node
            else:
                dnode = dendropy.Node()
                mapping[node.parent_id].add_child(dnode)

            support = format_number(node.support, self.precision)
            if node.is_leaf():
                if node.label is not None:
                    dnode.taxon = taxon_namespace.require_taxon(label=node.label)
            elif node.label is not None:
                dnode.label = node.label
            elif node.support is not None and not nhx:
                dnode.label = support

            if node.support is not None and (nhx or node.label is not None):
                dnode.annotations.add_new('B', support)
            if nhx:
                for key, value in node.metadata.items():
                    dnode.annotations.add_new(key, value)

            dnode.edge.length = node.length
            mapping[node.id] = dnode
        return dendropy_tree

    def render_report(self, report):
        """
        Render a Report as delimited text.

        A header line starting with '#' names the columns; notes come first as
        '#' lines. Missing values are written as '-'.
        """
        lines = [f"# {note}" for note in report.notes]
        lines.append('#' + self.delimiter.join(report.columns))
        for row in report.rows:
            lines.append(self.delimiter.join(self._format_field(value) for value in row))
        return '\n'.join(lines) + '\n'

    def render(self, result, schema=None):
        """
        Render a tree, a report, or a sequence of trees (one per line).

        Returns:
            str: The rendered text.
        """
        if isinstance(result, Report):
            return self.render_report(result)
        if hasattr(result, 'preorder'):
            return self.write_to_string(result, schema=schema)
        return ''.join(self.write_to_string(tree, schema=schema) for tree in result)

    def _format_field(self, value):
        if value is None:
            return '-'
        if isinstance(value, float):
            return format_number(value, self.precision)
        return str(value)
