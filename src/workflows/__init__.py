"""
Workflows module - Scan orchestration.
"""
from workflows.base import ScanWorkflow
from workflows.scan_orchestrator import ScanOrchestrator, summarize

__all__ = [
    "ScanWorkflow",
    "ScanOrchestrator",
    "summarize",
]
