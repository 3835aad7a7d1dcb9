#!/usr/bin/env python
"""
Exceptions Module - Error taxonomy for the tree manipulation engine

Every error raised by the engine derives from EngineError, so callers can
catch a single type. Errors are terminal for the current operation.
"""


class EngineError(Exception):
    """Base exception for tree engine errors."""

    def __init__(self, message, token=None):
        """
        Initialize with a message and the offending identifier or token.

        Args:
            message (str): Human readable description of the failure.
            token (str, optional): Node identifier, label or input token that
                                   triggered the error.
        """
        self.message = message
        self.token = token
        super().__init__(message)


class FormatError(EngineError):
    """Raised when serialized input (tree or trait table) is malformed."""


class StructureError(EngineError):
    """Raised when an operation would violate the tree invariants."""


class NotFoundError(EngineError):
    """Raised when a node or leaf identifier does not resolve."""

    def __init__(self, identifier):
        super().__init__(f"Node not found in tree: {identifier}", token=identifier)


class MissingDataError(EngineError):
    """Raised when an operation needs branch lengths or supports that are absent."""


class InvalidArgumentError(EngineError):
    """Raised for out-of-range parameters and empty selections."""
