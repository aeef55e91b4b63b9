"""
Type mapping utilities for converting between SOLR and entity values.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Type

from solr_adapter.core.models import FieldSpec


class TypeMapper:
    """Maps SOLR field types to normalized types and converts values."""

    # Normalized type names used by FieldSpec.type
    COMMON_TYPE_MAP = {
        "string": str,
        "text": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "date": datetime,
    }

    # SOLR schema field types (managed-schema defaults)
    SOLR_TYPE_MAP = {
        "string": str,
        "strings": str,
        "text_general": str,
        "text_en": str,
        "pint": int,
        "pints": int,
        "plong": int,
        "plongs": int,
        "pfloat": float,
        "pfloats": float,
        "pdouble": float,
        "pdoubles": float,
        "boolean": bool,
        "booleans": bool,
        "pdate": datetime,
        "pdates": datetime,
    }

    @classmethod
    def get_python_type(cls, field_type: str, source_db: str = "common") -> Type:
        """
        Get Python type for a field type.

        Args:
            field_type: Type name
            source_db: ``solr`` for schema field types, ``common`` for normalized names

        Returns:
            Python type class
        """
        type_map = cls.SOLR_TYPE_MAP if source_db == "solr" else cls.COMMON_TYPE_MAP
        return type_map.get(field_type.lower(), Any)

    @classmethod
    def normalize_type(cls, field_type: str, source_db: str = "solr") -> str:
        """
        Normalize a SOLR field type to a FieldSpec type name.

        Returns:
            One of string, text, integer, number, boolean, date, unknown
        """
        if field_type.lower().startswith("text_"):
            return "text"

        python_type = cls.get_python_type(field_type, source_db)

        if python_type is str:
            return "string"
        elif python_type is bool:
            return "boolean"
        elif python_type is int:
            return "integer"
        elif python_type is float:
            return "number"
        elif python_type is datetime:
            return "date"
        else:
            return "unknown"

    @classmethod
    def to_field_type(cls, field_type: str) -> str:
        """
        Resolve a FieldSpec type given either as a normalized name or as a
        SOLR schema type (``pint``, ``pdate``, ``text_general``).

        Types neither map knows are returned unchanged; their values pass
        through without coercion.
        """
        if field_type in cls.COMMON_TYPE_MAP:
            return field_type
        normalized = cls.normalize_type(field_type, "solr")
        return field_type if normalized == "unknown" else normalized

    @classmethod
    def to_store(cls, value: Any, field: FieldSpec) -> Any:
        """Convert an entity value to its SOLR document representation."""
        if value is None:
            return None
        if isinstance(value, (list, tuple, set)):
            return [cls.to_store(v, field) for v in value]
        if isinstance(value, Enum):
            value = value.value
        if isinstance(value, datetime):
            return cls.format_datetime(value)
        if isinstance(value, date):
            return cls.format_datetime(datetime(value.year, value.month, value.day))
        if isinstance(value, Decimal):
            return float(value)
        return value

    @classmethod
    def from_store(cls, value: Any, field: FieldSpec) -> Any:
        """Convert a SOLR document value to an entity value."""
        if value is None:
            return None
        if isinstance(value, list):
            if not field.multi_valued:
                # Schemas with multiValued defaults return lists for scalars.
                return cls.from_store(value[0], field) if value else None
            return [cls.from_store(v, field.model_copy(update={"multi_valued": False})) for v in value]

        if field.type == "date" and isinstance(value, str):
            return cls.parse_datetime(value)
        if field.type == "integer" and isinstance(value, (str, float)):
            return int(value)
        if field.type == "number" and isinstance(value, (str, int)) and not isinstance(value, bool):
            return float(value)
        if field.type == "boolean" and isinstance(value, str):
            return value.lower() == "true"
        return value

    @staticmethod
    def format_datetime(value: datetime) -> str:
        """Render a datetime as SOLR's UTC ISO-8601 form (``...Z``)."""
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.isoformat(timespec="milliseconds" if value.microsecond else "seconds") + "Z"

    @staticmethod
    def parse_datetime(value: str) -> datetime:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        return datetime.fromisoformat(value)

    @classmethod
    def document_to_values(cls, document: Dict[str, Any], fields: List[FieldSpec]) -> Dict[str, Any]:
        """
        Map a SOLR document onto entity field names.

        Store columns not described by ``fields`` and SOLR internal fields
        are dropped.
        """
        values: Dict[str, Any] = {}
        for field in fields:
            if field.store_name in document:
                values[field.name] = cls.from_store(document[field.store_name], field)
        return values
