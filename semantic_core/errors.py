"""
Exception hierarchy shared by the semantic core components.
"""

from typing import Optional


class SemanticCoreError(Exception):
    """Base class for all semantic core errors."""


class NotFoundError(SemanticCoreError):
    """An entity, table or join path is absent. Normally absorbed at component boundaries."""


class PermissionDeniedError(SemanticCoreError):
    """The retrieval configuration disables the requested capability."""

    def __init__(self, message: str, flag: Optional[str] = None):
        super().__init__(message)
        self.flag = flag


class BackendUnavailableError(SemanticCoreError):
    """A search or storage backend failed or timed out."""

    def __init__(self, message: str, backend: Optional[str] = None):
        super().__init__(message)
        self.backend = backend


class InvalidRequestError(SemanticCoreError):
    """Malformed mode, out-of-range limit, or a non-SELECT structured query."""


class BuildFailureError(SemanticCoreError):
    """A knowledge graph build could not complete atomically."""


class BuildInProgressError(BuildFailureError):
    """A knowledge graph build was requested while another one is running."""
