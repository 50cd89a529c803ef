"""
Unit tests for sequence range parsing.

Tests for:
- Range construction and validation
- parse_range_spec() for each accepted shape
- Error reporting for bad keys and bad ranges
"""

import pytest
import sys
import os
import numpy as np

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from seqtree.exceptions import InvalidRange, InvalidRangeSpec
from seqtree.ranges import (
    Range,
    FullSequence,
    GlobalRange,
    PerAccessionRanges,
    parse_range_spec
)


class TestRange:
    """Test the Range value type."""

    def test_valid_range(self):
        """Test that a positive, increasing range is accepted."""
        r = Range(100, 300)
        assert r.as_tuple() == (100, 300)

    @pytest.mark.parametrize("start,end", [(0, 10), (-5, 10), (10, 10), (20, 10), (1.5, 10)])
    def test_invalid_range_raises(self, start, end):
        """Test that non-positive, non-integer or non-increasing bounds are rejected."""
        with pytest.raises(InvalidRange):
            Range(start, end)

    def test_bool_bounds_rejected(self):
        """Test that booleans are not accepted as positions."""
        with pytest.raises(InvalidRange):
            Range(True, 5)

    def test_numpy_integer_bounds(self):
        """Test that numpy integers are accepted and stored as plain ints."""
        r = Range(np.int64(5), np.int32(10))
        assert r == Range(5, 10)
        assert type(r.start) is int
        assert type(r.end) is int


class TestParseRangeSpec:
    """Test parse_range_spec() shapes."""

    def test_none_is_full_sequence(self):
        """Test that no range means full sequences for every accession."""
        spec = parse_range_spec(None)
        assert isinstance(spec, FullSequence)
        assert spec.resolve("A1") is None

    def test_tuple_is_global_range(self):
        """Test that a pair applies to every accession."""
        spec = parse_range_spec((100, 300))
        assert isinstance(spec, GlobalRange)
        assert spec.resolve("A1") == Range(100, 300)
        assert spec.resolve("anything") == Range(100, 300)

    def test_list_is_global_range(self):
        """Test that a two-item list is accepted like a tuple."""
        spec = parse_range_spec([5, 10])
        assert spec.resolve("A1") == Range(5, 10)

    def test_numpy_integer_pairs(self):
        """Test that ranges built from numpy integers are accepted."""
        assert parse_range_spec((np.int64(1), np.int64(9))).resolve("A1") == Range(1, 9)
        spec = parse_range_spec({"A1": (np.int64(50), np.int64(150))})
        assert spec.resolve("A1") == Range(50, 150)

    def test_range_instance_is_global_range(self):
        """Test that a Range instance is accepted directly."""
        spec = parse_range_spec(Range(1, 2))
        assert isinstance(spec, GlobalRange)

    def test_existing_spec_is_returned(self):
        """Test that an already-built RangeSpec passes through unchanged."""
        spec = PerAccessionRanges({"A1": Range(1, 5)})
        assert parse_range_spec(spec) is spec

    def test_mapping_is_per_accession(self):
        """Test per-accession resolution with fallback to the full sequence."""
        spec = parse_range_spec({"A1": (50, 150)})
        assert isinstance(spec, PerAccessionRanges)
        assert spec.resolve("A1") == Range(50, 150)
        assert spec.resolve("A2") is None

    def test_mapping_with_unknown_accession_is_accepted(self):
        """Test that keys need not match any fetched accession."""
        spec = parse_range_spec({"NOT_FETCHED": (1, 10)})
        assert spec.resolve("A1") is None

    def test_invalid_global_range(self):
        """Test that a bad global range lists the offending values."""
        with pytest.raises(InvalidRange) as exc_info:
            parse_range_spec((300, 100))
        assert exc_info.value.invalid == {"range": (300, 100)}
        assert "300" in str(exc_info.value)

    def test_wrong_length_sequence_is_bad_shape(self):
        """Test that a sequence of the wrong length is not a range."""
        with pytest.raises(InvalidRangeSpec):
            parse_range_spec((1, 2, 3))

    @pytest.mark.parametrize("value", ["1-10", 42, 3.5, {1, 2}])
    def test_other_shapes_rejected(self, value):
        """Test that strings, scalars and sets are rejected."""
        with pytest.raises(InvalidRangeSpec):
            parse_range_spec(value)

    def test_empty_key_rejected(self):
        """Test that an empty accession key is an InvalidRangeSpec error."""
        with pytest.raises(InvalidRangeSpec):
            parse_range_spec({"": (1, 10)})

    def test_empty_key_checked_before_values(self):
        """Test that a bad key wins over bad range values."""
        with pytest.raises(InvalidRangeSpec):
            parse_range_spec({"A1": (10, 1), "": (0, 0)})

    def test_non_string_key_rejected(self):
        """Test that non-string keys are an InvalidRangeSpec error."""
        with pytest.raises(InvalidRangeSpec):
            parse_range_spec({None: (1, 10)})

    def test_all_invalid_keys_reported(self):
        """Test that every invalid mapping entry is listed, not just the first."""
        with pytest.raises(InvalidRange) as exc_info:
            parse_range_spec({
                "A1": (10, 1),
                "A2": (1, 10),
                "A3": (0, 5),
                "A4": "oops"
            })
        assert set(exc_info.value.invalid) == {"A1", "A3", "A4"}
        message = str(exc_info.value)
        for key in ("A1", "A3", "A4"):
            assert key in message
