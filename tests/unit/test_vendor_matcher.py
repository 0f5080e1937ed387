"""
Unit tests for vendor matching.
"""
import pytest

from pipeline.vendor_matcher import VendorMatcher


@pytest.mark.unit
class TestVendorMatcher:
    """Tests for VendorMatcher class."""

    def test_load_vendors_from_csv(self, sample_vendors_csv):
        """Test loading vendors and their aliases from CSV."""
        matcher = VendorMatcher(sample_vendors_csv)

        assert len(matcher.vendors) == 3
        assert matcher.vendors[0].id == "V-100"
        assert matcher.vendors[0].aliases == ["ACE SUPPLY", "Ace Plumbing Supply"]
        assert matcher.vendors[2].aliases == []

    def test_match_exact_normalized_name(self, sample_vendors_csv):
        """Test suffix and case variants match exactly."""
        matcher = VendorMatcher(sample_vendors_csv)

        result = matcher.match("ACE SUPPLY, INC.")

        assert result is not None
        assert result.vendor_id == "V-100"
        assert result.match_method == "name_exact"
        assert result.confidence == 1.0

    def test_match_by_alias(self, sample_vendors_csv):
        matcher = VendorMatcher(sample_vendors_csv)
        result = matcher.match("Ferguson")
        assert result.vendor_id == "V-200"
        assert result.match_method == "name_exact"

    def test_fuzzy_match(self, sample_vendors_csv):
        """Test a near-miss spelling is accepted above the threshold."""
        matcher = VendorMatcher(sample_vendors_csv)

        result = matcher.match("Vincent Mechanical Suply")

        assert result is not None
        assert result.vendor_id == "V-300"
        assert result.match_method == "name_fuzzy"
        assert 0.85 <= result.confidence < 1.0

    def test_no_match(self, sample_vendors_csv):
        matcher = VendorMatcher(sample_vendors_csv)
        assert matcher.match("Completely Different Distributors") is None

    def test_threshold_is_configurable(self, sample_vendors_csv):
        strict = VendorMatcher(sample_vendors_csv, fuzzy_threshold=100)
        assert strict.match("Vincent Mechanical Suply") is None

    def test_empty_name(self, sample_vendors_csv):
        matcher = VendorMatcher(sample_vendors_csv)
        assert matcher.match("") is None
        assert matcher.match(None) is None

    def test_missing_csv_disables_matching(self, temp_dir):
        matcher = VendorMatcher(temp_dir / "missing.csv")
        assert matcher.vendors == []
        assert matcher.match("Ace Supply") is None
