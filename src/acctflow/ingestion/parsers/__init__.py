"""Accounting line parsers.

Supports:
- ipcad `show ip accounting` tables
"""

from acctflow.ingestion.parsers.base import FlowParser, FlowRecord, RunContext
from acctflow.ingestion.parsers.ipcad import IpcadParser

__all__ = [
    "FlowParser",
    "FlowRecord",
    "RunContext",
    "IpcadParser",
]
