"""
Codex Ledger

Append-only, hash-chained, tamper-evident record of content lifecycle
events: who authored a piece of content, and when.
"""

__version__ = "1.0.0"
