# seqtree/ranges.py

"""
Sequence sub-range handling for the batch fetcher.

A range request comes in one of three shapes, modelled as a small tagged
variant:

- FullSequence: no range, every accession is fetched in full
- GlobalRange: one Range applied to every accession
- PerAccessionRanges: a Range per accession; accessions without an entry
  are fetched in full and entries for unknown accessions are ignored

parse_range_spec() turns user input (None, a (start, end) pair, or a
mapping of accession -> pair) into one of these, validating everything up
front so no network request is made for a bad argument.
"""

import logging
import numbers
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence

from .exceptions import InvalidRange, InvalidRangeSpec

logger = logging.getLogger(__name__)


def _is_positive_int(value: Any) -> bool:
    # bool is an int subclass but True/False are not sequence positions
    return isinstance(value, numbers.Integral) and not isinstance(value, bool) and value > 0


def _is_pair(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes)) and len(value) == 2


@dataclass(frozen=True)
class Range:
    """
    Inclusive, 1-based sub-sequence window.

    Attributes:
        start: First position to fetch (>= 1)
        end: Last position to fetch (> start)
    """
    start: int
    end: int

    def __post_init__(self):
        if not (_is_positive_int(self.start) and _is_positive_int(self.end) and self.start < self.end):
            raise InvalidRange({"range": (self.start, self.end)})
        # numpy and other integral types are stored as plain ints
        object.__setattr__(self, "start", int(self.start))
        object.__setattr__(self, "end", int(self.end))

    def as_tuple(self):
        return (self.start, self.end)


def _coerce_range(value: Any) -> Optional[Range]:
    """Return a Range for a valid range-like value, or None."""
    if isinstance(value, Range):
        return value
    if not _is_pair(value):
        return None
    start, end = value
    if _is_positive_int(start) and _is_positive_int(end) and start < end:
        return Range(start, end)
    return None


class RangeSpec:
    """Base class of the three range request shapes."""

    def resolve(self, accession: str) -> Optional[Range]:
        raise NotImplementedError


@dataclass(frozen=True)
class FullSequence(RangeSpec):
    def resolve(self, accession: str) -> Optional[Range]:
        return None


@dataclass(frozen=True)
class GlobalRange(RangeSpec):
    range: Range

    def resolve(self, accession: str) -> Optional[Range]:
        return self.range


@dataclass(frozen=True)
class PerAccessionRanges(RangeSpec):
    ranges: Dict[str, Range] = field(default_factory=dict)

    def resolve(self, accession: str) -> Optional[Range]:
        return self.ranges.get(accession)


def _parse_mapping(value: Mapping) -> PerAccessionRanges:
    # Keys are checked before any value so a bad key is always reported as such
    for key in value:
        if not isinstance(key, str) or not key.strip():
            raise InvalidRangeSpec(
                f"Every key in a per-accession range mapping must be a non-empty accession string, got {key!r}"
            )

    ranges = {}
    invalid = {}
    for key, raw in value.items():
        parsed = _coerce_range(raw)
        if parsed is None:
            invalid[key] = raw
        else:
            ranges[key] = parsed

    if invalid:
        raise InvalidRange(invalid)

    logger.debug(f"Parsed per-accession ranges for {len(ranges)} accessions")
    return PerAccessionRanges(ranges)


def parse_range_spec(value: Any) -> RangeSpec:
    """
    Validate a range argument and convert it to a RangeSpec.

    Args:
        value: None, a Range, a (start, end) pair, a mapping of
            accession -> Range or (start, end), or an existing RangeSpec.

    Returns:
        RangeSpec: FullSequence, GlobalRange or PerAccessionRanges

    Raises:
        InvalidRangeSpec: If the value has none of the accepted shapes, or a
            mapping has an empty or non-string key.
        InvalidRange: If any range bound is not a positive integer or
            start >= end. All invalid mapping entries are reported at once.
    """
    if value is None:
        return FullSequence()

    if isinstance(value, RangeSpec):
        return value

    if isinstance(value, Range):
        return GlobalRange(value)

    if isinstance(value, Mapping):
        return _parse_mapping(value)

    if _is_pair(value):
        parsed = _coerce_range(value)
        if parsed is None:
            raise InvalidRange({"range": tuple(value)})
        return GlobalRange(parsed)

    raise InvalidRangeSpec(
        "seq_range must be None, a (start, end) pair, or a mapping of accession to (start, end); "
        f"got {type(value).__name__}: {value!r}"
    )
