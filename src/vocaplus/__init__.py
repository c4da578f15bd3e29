"""Vocabulary test engine: datasets, question sets, timed sessions and history."""

__version__ = "0.1.0"
