"""Polyglot Analyzer: fault-tolerant multi-language structure analysis."""

__version__ = "0.1.0"
