"""Exceptions shared by the Feature Tracker services."""


class TrackerError(Exception):
    """Base exception for tracker operations."""
    pass


class NotFoundError(TrackerError):
    """Referenced entity does not exist."""
    pass


class ValidationError(TrackerError):
    """Input is malformed or violates a domain rule."""
    pass


class ConflictError(TrackerError):
    """Operation collides with existing state."""
    pass


class ProductNotFoundError(NotFoundError):
    pass


class ReleaseNotFoundError(NotFoundError):
    pass


class FeatureNotFoundError(NotFoundError):
    pass
