"""Quorum: collaborative validation engine with expert consensus."""

__version__ = "0.1.0"
