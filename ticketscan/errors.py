"""
Error taxonomy for the ticket extraction pipeline.

Tier-level errors (segmentation, network, refusal, parse) are recovered by
falling through to the next tier. Only exhaustion of every tier reaches the
caller, wrapped in ExtractionExhausted.
"""

from typing import List, Optional


class TicketScanError(Exception):
    """Base class for every error raised by ticketscan."""


class ConfigurationError(TicketScanError):
    """Missing API key or an unusable configuration value."""


class SegmentationError(TicketScanError):
    """The number grid could not be formed from the recognized text."""


class RecognitionFailure(TicketScanError):
    """A single cell could not be read. Recorded as a sentinel, never propagated."""


class NetworkError(TicketScanError):
    """Connectivity is absent or the HTTP transport failed."""


class RefusalError(TicketScanError):
    """The cloud vision service declined to process the image."""


class ParseError(TicketScanError):
    """A response or a canonical ticket string could not be decoded into rows."""


class ScanCancelled(TicketScanError):
    """The caller abandoned the scan before the next network call."""


class ExtractionExhausted(TicketScanError):
    """
    Every tier failed.

    The last tier error is available as ``last_error`` (and as ``__cause__``
    when raised with ``from``). ``partial_rows`` holds whatever the local tier
    recovered, for callers that want to offer manual correction.
    """

    def __init__(self, message: str, last_error: Optional[Exception] = None,
                 partial_rows: Optional[List] = None):
        super().__init__(message)
        self.last_error = last_error
        self.partial_rows = partial_rows or []
