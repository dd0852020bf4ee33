from .inference import SchemaInferenceEngine, coerce_value, detect_shape, sanitize_column_name, widen
from .models import ColumnType, InferredSchema, SchemaColumn, SchemaWarning, ValueShape
from .quoting import create_table_sql, insert_sql, quote_identifier, select_sql

__all__ = [
    "ColumnType",
    "InferredSchema",
    "SchemaColumn",
    "SchemaInferenceEngine",
    "SchemaWarning",
    "ValueShape",
    "coerce_value",
    "create_table_sql",
    "detect_shape",
    "insert_sql",
    "quote_identifier",
    "sanitize_column_name",
    "select_sql",
    "widen",
]
