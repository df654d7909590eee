"""
Test Tools Package
Tests for the tools module (clock, timezone utilities, occurrence planner)
"""

__all__ = [
    "test_occurrence_planner",
    "test_timezone_utils",
]
