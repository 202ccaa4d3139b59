"""
Failure taxonomy shared by the orchestrator and the service clients.

Clients translate whatever their backing service raises into one of these
at their boundary; nothing above the clients inspects native exceptions.
"""


class StoryboardError(Exception):
    """Base exception for storyboard generation errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotConfigured(StoryboardError):
    """Service is categorically unusable (missing or rejected credentials)."""


class RateLimited(StoryboardError):
    """Service reported throttling; the rest of the run is abandoned."""


class PreconditionError(StoryboardError):
    """Operation invoked while its invariants do not hold; nothing was done."""


class GenericError(StoryboardError):
    """Any other failure: malformed responses, network errors, ffmpeg errors."""
