"""Rank crates by scoring their registry metadata and GitHub repositories."""

__version__ = "0.4.0"
