"""Exception types shared by the ingestion pipeline, dispatch and API layers."""

from __future__ import annotations

from typing import Optional


class RfpIngestError(RuntimeError):
    """Base class for expected failures raised by the service layer."""


class NotFoundError(RfpIngestError):
    """Raised when a solicitation or vendor does not exist."""


class DuplicateVendorError(RfpIngestError):
    """Raised when a vendor email address is already registered."""


class ExtractionError(RfpIngestError):
    """Raised when the extraction oracle fails or returns a non-conforming payload."""


class AnalysisError(RfpIngestError):
    """Raised when the analysis oracle fails or returns a non-conforming payload."""


class MailboxConnectionError(RfpIngestError):
    """Raised when the IMAP session cannot be established or is torn down."""


class InvalidSenderError(RfpIngestError):
    """Raised when an inbound message carries no parseable sender address."""

    def __init__(self, raw_sender: Optional[str]) -> None:
        super().__init__(f"Unable to determine sender address from {raw_sender!r}")
        self.raw_sender = raw_sender


class MailTransportError(RfpIngestError):
    """Raised when the outbound SMTP transport rejects or fails a send."""


__all__ = [
    "RfpIngestError",
    "NotFoundError",
    "DuplicateVendorError",
    "ExtractionError",
    "AnalysisError",
    "MailboxConnectionError",
    "InvalidSenderError",
    "MailTransportError",
]
