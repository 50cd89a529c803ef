# seqtree/exceptions.py

"""
Exception hierarchy for seqtree.

Validation errors (InvalidRangeSpec, InvalidRange, InvalidDatabase,
AlignmentInputError) are raised before any work starts. LookupMiss and
FetchFailure describe a single accession and are caught by the batch
fetcher, which logs them and moves on.
"""

from typing import Any, Dict, Optional


class SeqTreeError(Exception):
    """Base class for all seqtree errors."""


class InvalidRangeSpec(SeqTreeError, ValueError):
    """The range argument has an unsupported shape or an empty key."""


class InvalidRange(SeqTreeError, ValueError):
    """
    One or more ranges break the 0 < start < end rule.

    Attributes:
        invalid: Mapping of accession (or "range" for a global range)
            to the offending value.
    """

    def __init__(self, invalid: Dict[str, Any], message: Optional[str] = None):
        self.invalid = dict(invalid)
        if message is None:
            details = ", ".join(f"{key}={value!r}" for key, value in self.invalid.items())
            message = f"Invalid sequence range(s); start and end must be positive integers with start < end: {details}"
        super().__init__(message)


class InvalidDatabase(SeqTreeError, ValueError):
    """The NCBI database name is not one of the supported values."""


class LookupMiss(SeqTreeError, LookupError):
    """An accession resolved to zero database ids."""

    def __init__(self, accession: str, db: str):
        self.accession = accession
        self.db = db
        super().__init__(f"No {db} record found for accession {accession}")


class FetchFailure(SeqTreeError, RuntimeError):
    """Summary, fetch or parse failed for a single accession."""

    def __init__(self, accession: str, message: str):
        self.accession = accession
        super().__init__(f"Failed to fetch {accession}: {message}")


class AlignmentInputError(SeqTreeError, ValueError):
    """Bad input to the alignment dispatcher."""


class AlignerNotFoundError(SeqTreeError, RuntimeError):
    """A multiple sequence alignment executable is not on PATH."""
