"""Operator tool driving the Nimbus SDK on a connected device (enroll, fetch, validate, test features)."""

__all__ = [
    "cli",
]
