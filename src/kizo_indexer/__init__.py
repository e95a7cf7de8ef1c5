"""Kizo Prediction Market Indexer.

Decodes events emitted by the Kizo prediction market contract and persists
them as relational records.
"""

__version__ = "0.1.0"
