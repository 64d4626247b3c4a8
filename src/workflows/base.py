"""
Contains base class for scan workflows
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from core.entities import ScanRecord
from core.scoring import Thresholds


class ScanWorkflow(ABC):
    """
    Orchestrates fetch → score → flag for a single identity.
    """

    @abstractmethod
    async def run_scan(
        self,
        identity_id: int,
        thresholds: Optional[Thresholds] = None,
    ) -> ScanRecord:
        """
        Execute one scan and return its terminal record.
        Must never raise uncaught exceptions.
        """
        raise NotImplementedError

    @abstractmethod
    def poll(self, identity_id: int) -> Dict[str, Any]:
        """
        Describe the current state of the scan for identity_id.
        """
        raise NotImplementedError
