"""Expose the MoMo provider fixture to the core tests."""

from momo.conftest import provider  # noqa: F401
