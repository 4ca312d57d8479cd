"""
Service-layer errors.

Everything derives from ValueError so routers can keep a single
`except ValueError` fallback. The subclasses exist where the HTTP
layer answers with something other than 400.
"""


class NotFoundError(ValueError):
    """The referenced row does not exist (or is not visible to the caller)."""


class PendingLimitExceeded(ValueError):
    """The account already has the maximum number of pending top-ups."""


class CodeGenerationExhausted(ValueError):
    """No free transfer code was found within the attempt budget. Retry."""


class EventStateConflict(ValueError):
    """A webhook event was not in a state that allows the requested move."""
