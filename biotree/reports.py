#!/usr/bin/env python
"""
Reports Module - Value types returned by queries and statistics

A Report is a titled table: fixed columns, one row per record. Rendering to
text is done by TreeWriter.render_report.
"""

from collections import namedtuple

Report = namedtuple('Report', ['title', 'columns', 'rows', 'unitless', 'notes'], defaults=(False, ()))

UNITLESS_NOTE = "branch lengths missing on the measured path; values are unitless"


class DistanceMatrix(namedtuple('DistanceMatrix', ['labels', 'matrix', 'unitless'])):
    """Symmetric leaf x leaf distance matrix with a zero diagonal."""

    __slots__ = ()

    def distance(self, first, second):
        return float(self.matrix[self.labels.index(first), self.labels.index(second)])

    def half_matrix(self):
        """Yield (otu_i, otu_j, distance) for the upper triangle, diagonal omitted."""
        for i, first in enumerate(self.labels):
            for j in range(i + 1, len(self.labels)):
                yield first, self.labels[j], float(self.matrix[i, j])

    def to_report(self):
        notes = (UNITLESS_NOTE,) if self.unitless else ()
        return Report('dist-all', ['otu1', 'otu2', 'distance'], list(self.half_matrix()), self.unitless, notes)
