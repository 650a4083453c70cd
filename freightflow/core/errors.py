"""
Exception types raised inside the engine.

Batch entry points catch these per message and record them on the message
row; they never abort a page.
"""


class FreightFlowError(Exception):
    """Base class for engine errors."""


class ClassificationError(FreightFlowError):
    """Classification could not produce a usable result."""


class ExternalModelError(ClassificationError):
    """The fallback model returned an unusable answer."""


class TransientModelError(ExternalModelError):
    """Timeout, rate limit or 5xx from the fallback model. Safe to retry."""


class LinkingError(FreightFlowError):
    """Linking failed for a reason other than a missing match."""


class ManualReviewLocked(FreightFlowError):
    """An automated path tried to overwrite a human-reviewed classification."""

    def __init__(self, message_id: int):
        super().__init__(f"Classification for message {message_id} is under manual review")
        self.message_id = message_id
