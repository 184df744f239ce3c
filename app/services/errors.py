"""Service-layer exceptions."""


class StoreError(Exception):
    """A persistence operation failed. The cause is not differentiated."""


class AIServiceError(Exception):
    """The generative provider failed to produce a reply or a title."""
