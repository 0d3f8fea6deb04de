"""Shared utility functions for the M365 admin tools."""

from .versions import extract_version, version_key

__all__ = ["extract_version", "version_key"]
