"""
Database interface for run history and suspended runs.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List


class AutomationDatabase(ABC):
    """
    Abstract interface for automation run storage.

    Implementations should handle:
    - Run logging (one entry per finished or suspended run)
    - Persisting continuations of runs suspended by a delay
    """

    @abstractmethod
    async def log_run(self, automation_id: str, run: Dict[str, Any]) -> str:
        """
        Log an automation run.

        Args:
            automation_id: Automation ID
            run: Serialized ExecutionTrace

        Returns:
            Log entry ID
        """
        pass

    @abstractmethod
    async def save_continuation(self, continuation: Dict[str, Any]) -> str:
        """
        Persist a suspended run so it survives a restart.

        Args:
            continuation: Serialized RunContinuation

        Returns:
            Stored continuation ID (the run ID)
        """
        pass

    @abstractmethod
    async def due_continuations(self, now: datetime) -> List[Dict[str, Any]]:
        """
        List suspended runs whose resume time has passed.

        Args:
            now: Current instant

        Returns:
            Serialized RunContinuation dicts
        """
        pass

    @abstractmethod
    async def delete_continuation(self, run_id: str) -> None:
        """Remove a continuation once it has been resumed or cancelled."""
        pass
