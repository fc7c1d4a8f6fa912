"""
Schema provider interface for field-type lookups.
"""

from abc import ABC, abstractmethod
from typing import Optional


class SchemaProvider(ABC):
    """
    Abstract interface for resolving field references against a table schema.

    Used by the condition evaluator and formula compiler for type-correct
    comparison and serialization.
    """

    @abstractmethod
    def get_field(self, field_ref: str):
        """
        Resolve a field reference.

        Args:
            field_ref: Field id or display name

        Returns:
            TableField if the reference resolves, None otherwise
        """
        pass

    @abstractmethod
    def get_field_type(self, field_ref: str) -> Optional[str]:
        """
        Get the declared type of a field.

        Args:
            field_ref: Field id or display name

        Returns:
            FieldType value if the reference resolves, None otherwise
        """
        pass
