"""
Exceptions raised by the post store and the analysis collaborator.
"""


class StoreError(RuntimeError):
    """Base class for post store failures."""


class DuplicatePostError(StoreError):
    """Raised when inserting a post whose id is already in the store."""

    def __init__(self, post_id: str):
        super().__init__(f"Post already exists: {post_id}")
        self.post_id = post_id


class PostNotFoundError(StoreError):
    """Raised when an operation references a post id the store does not hold."""

    def __init__(self, post_id: str):
        super().__init__(f"Post not found: {post_id}")
        self.post_id = post_id


class ConsistencyError(StoreError):
    """Raised when a write would leave summary fields disagreeing with verification details."""


class AnalysisError(RuntimeError):
    """Raised when the analysis collaborator call fails or returns unparseable data."""
