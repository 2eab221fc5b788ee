"""
Version Compare
Best-effort comparison of free-form plugin version strings
"""

import re

_SEGMENT_SPLIT = re.compile(r'\D+')


def parse_version_segments(version):
    """Split a version string into integer segments.

    Args:
        version: str - Free-form version string (e.g. 'v1.2-beta3')

    Returns:
        list - Integer segments, e.g. [1, 2, 3]
    """
    segments = []
    for part in _SEGMENT_SPLIT.split(str(version)):
        if not part:
            continue
        try:
            segments.append(int(part))
        except ValueError:
            segments.append(0)
    return segments


def is_version_newer(candidate, baseline):
    """Check whether candidate is strictly newer than baseline.

    Missing data never proves anything: an empty candidate or baseline
    is reported as not newer.

    Args:
        candidate: str - Version seen upstream
        baseline: str - Version installed locally

    Returns:
        bool - True if candidate > baseline segment-by-segment
    """
    if not candidate or not baseline:
        return False
    if candidate == baseline:
        return False

    left = parse_version_segments(candidate)
    right = parse_version_segments(baseline)
    length = max(len(left), len(right))
    left += [0] * (length - len(left))
    right += [0] * (length - len(right))

    for a, b in zip(left, right):
        if a > b:
            return True
        if a < b:
            return False
    return False
