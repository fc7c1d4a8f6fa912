"""
Data store interface for record mutations.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class DataStore(ABC):
    """
    Abstract interface for reading and mutating table records.

    Implementations raise DataStoreError on failure. The engine does not
    retry or compensate; the error message is surfaced verbatim on the
    failed action.
    """

    @abstractmethod
    async def get_record(self, table_id: str, record_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a record by ID.

        Returns:
            Record dict if found, None otherwise
        """
        pass

    @abstractmethod
    async def update_record(self, table_id: str, record_id: str, fields: Dict[str, Any]) -> str:
        """
        Update fields of an existing record.

        Args:
            table_id: Table the record belongs to
            record_id: Record to update
            fields: Field values to set, keyed by field name

        Returns:
            ID of the updated record
        """
        pass

    @abstractmethod
    async def create_record(self, table_id: str, fields: Dict[str, Any]) -> str:
        """
        Create a record.

        Returns:
            ID of the created record
        """
        pass

    @abstractmethod
    async def delete_record(self, table_id: str, record_id: str) -> str:
        """
        Delete a record.

        Returns:
            ID of the deleted record
        """
        pass
