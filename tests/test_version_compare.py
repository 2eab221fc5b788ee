"""Test best-effort version comparison."""

from itertools import product

import pytest

from version_compare import is_version_newer, parse_version_segments

SAMPLES = ['1.0', '1.0.0', '1.2', '1.2.0', '1.10', '1.9.9', '2', 'v1.2', '1.2-beta3', '2024.01.05', '', 'dev']


@pytest.mark.parametrize("candidate, baseline, expected", [
    ("1.2.0", "1.1.9", True),
    ("1.2", "1.2.0", False),
    ("2", "1.9.9", True),
    ("1.10", "1.9", True),
    ("1.9", "1.10", False),
    ("v1.3", "1.2", True),
])
def test_known_comparisons(candidate, baseline, expected):
    """Test documented comparison results."""
    assert is_version_newer(candidate, baseline) is expected


def test_equal_versions_are_never_newer():
    for version in SAMPLES:
        assert is_version_newer(version, version) is False


def test_comparison_is_antisymmetric():
    """isNewer(a, b) and isNewer(b, a) are never both true."""
    for a, b in product(SAMPLES, repeat=2):
        assert not (is_version_newer(a, b) and is_version_newer(b, a)), (a, b)


def test_missing_versions_prove_nothing():
    assert is_version_newer("", "1.0") is False
    assert is_version_newer("1.0", "") is False
    assert is_version_newer(None, "1.0") is False
    assert is_version_newer("1.0", None) is False


def test_parse_version_segments_drops_non_numeric_parts():
    assert parse_version_segments("v1.2-beta3") == [1, 2, 3]
    assert parse_version_segments("dev") == []
    assert parse_version_segments("2024.01.05") == [2024, 1, 5]
