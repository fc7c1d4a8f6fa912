"""
Notification handler interface for failed runs.
"""

from abc import ABC, abstractmethod
from typing import Optional


class NotificationHandler(ABC):
    """
    Abstract interface for telling the automation owner about failed runs.
    """

    @abstractmethod
    async def notify_automation_failed(
        self,
        automation_id: str,
        automation_name: str,
        error_summary: Optional[str] = None
    ) -> None:
        """
        Notify the owner that an automation run failed.

        Args:
            automation_id: Automation ID
            automation_name: Human-readable automation name
            error_summary: Optional error description
        """
        pass
