"""Repository modules for the solicitation, vendor, proposal and ledger tables."""

__all__ = [
    "email_log_repo",
    "proposal_repo",
    "solicitation_repo",
    "vendor_repo",
]
