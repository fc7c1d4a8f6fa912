"""
Sandboxed script runner interface for run_script actions.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict


class ScriptRunner(ABC):
    """
    Abstract interface for an external sandboxed script evaluator.

    The engine treats scripts as a black box: it passes the code and the
    trigger record and takes back an output or a ScriptError.
    """

    @abstractmethod
    async def run(self, code: str, context: Dict[str, Any]) -> Any:
        """
        Run a script.

        Args:
            code: Script source, templates already resolved
            context: Trigger record and prior action results

        Returns:
            Script output (JSON-serializable)
        """
        pass
