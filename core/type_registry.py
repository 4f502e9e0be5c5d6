from enum import Enum
from typing import Dict, Optional


class LogicalType(Enum):
    # Numeric
    SMALLINT = "smallint"
    INTEGER = "integer"
    BIGINT = "bigint"
    NUMERIC = "numeric"  # With precision/scale
    REAL = "real"
    DOUBLE = "double precision"

    # String
    CHAR = "char"  # Fixed length
    VARCHAR = "varchar"  # Variable length
    TEXT = "text"  # Unlimited

    # Binary
    BYTEA = "bytea"

    # Date/Time
    DATE = "date"
    TIME = "time"
    TIMESTAMP = "timestamp"
    TIMESTAMPTZ = "timestamptz"

    # Boolean
    BOOLEAN = "boolean"

    # Special
    UUID = "uuid"
    JSON = "json"
    JSONB = "jsonb"

    # Element-qualified array, see TypeInfo.element
    ARRAY = "array"

    # Fallback: label comes from the raw catalog name
    UNKNOWN = "unknown"


class TypeInfo:
    def __init__(self, logical: LogicalType, precision: Optional[int] = None,
                 scale: Optional[int] = None, length: Optional[int] = None,
                 element: Optional['TypeInfo'] = None, raw_name: Optional[str] = None):
        self.logical = logical
        self.precision = precision
        self.scale = scale
        self.length = length
        self.element = element
        self.raw_name = raw_name

    @property
    def is_array(self) -> bool:
        return self.logical == LogicalType.ARRAY

    @property
    def base_name(self) -> str:
        """Type name without modifiers, usable in a cast (e.g. ::uuid[])"""
        if self.is_array:
            return f"{self.element.base_name}[]"
        if self.logical == LogicalType.UNKNOWN:
            return self.raw_name or 'text'
        return self.logical.value

    @property
    def label(self) -> str:
        """Type name as written in a column definition"""
        if self.logical in (LogicalType.VARCHAR, LogicalType.CHAR) and self.length:
            return f"{self.logical.value}({self.length})"
        if self.logical == LogicalType.NUMERIC and self.precision:
            if self.scale:
                return f"numeric({self.precision},{self.scale})"
            return f"numeric({self.precision})"
        return self.base_name

    def __eq__(self, other):
        if not isinstance(other, TypeInfo):
            return NotImplemented
        return (self.logical, self.label) == (other.logical, other.label)

    def __hash__(self):
        return hash((self.logical, self.label))

    def __repr__(self):
        return f"TypeInfo({self.label}, p={self.precision}, s={self.scale}, l={self.length})"


class TypeRegistry:
    # information_schema.columns.data_type -> LogicalType
    DATA_TYPES: Dict[str, LogicalType] = {
        'smallint': LogicalType.SMALLINT,
        'integer': LogicalType.INTEGER,
        'bigint': LogicalType.BIGINT,
        'numeric': LogicalType.NUMERIC,
        'decimal': LogicalType.NUMERIC,
        'real': LogicalType.REAL,
        'double precision': LogicalType.DOUBLE,
        'character': LogicalType.CHAR,
        'char': LogicalType.CHAR,
        'character varying': LogicalType.VARCHAR,
        'varchar': LogicalType.VARCHAR,
        'text': LogicalType.TEXT,
        'bytea': LogicalType.BYTEA,
        'boolean': LogicalType.BOOLEAN,
        'date': LogicalType.DATE,
        'time without time zone': LogicalType.TIME,
        'time': LogicalType.TIME,
        'timestamp without time zone': LogicalType.TIMESTAMP,
        'timestamp': LogicalType.TIMESTAMP,
        'timestamp with time zone': LogicalType.TIMESTAMPTZ,
        'timestamptz': LogicalType.TIMESTAMPTZ,
        'uuid': LogicalType.UUID,
        'json': LogicalType.JSON,
        'jsonb': LogicalType.JSONB,
    }

    # Array element lookup keyed by udt_name (PostgreSQL prefixes array types with '_')
    ARRAY_ELEMENTS: Dict[str, LogicalType] = {
        '_text': LogicalType.TEXT,
        '_varchar': LogicalType.VARCHAR,
        '_bpchar': LogicalType.CHAR,
        '_int2': LogicalType.SMALLINT,
        '_int4': LogicalType.INTEGER,
        '_int8': LogicalType.BIGINT,
        '_numeric': LogicalType.NUMERIC,
        '_float4': LogicalType.REAL,
        '_float8': LogicalType.DOUBLE,
        '_bool': LogicalType.BOOLEAN,
        '_uuid': LogicalType.UUID,
        '_json': LogicalType.JSON,
        '_jsonb': LogicalType.JSONB,
        '_date': LogicalType.DATE,
        '_timestamp': LogicalType.TIMESTAMP,
        '_timestamptz': LogicalType.TIMESTAMPTZ,
    }

    JSON_TYPES = frozenset({LogicalType.JSON, LogicalType.JSONB})
    TEMPORAL_TYPES = frozenset({LogicalType.TIMESTAMP, LogicalType.TIMESTAMPTZ})

    @staticmethod
    def resolve(data_type: str, udt_name: Optional[str] = None, max_length: Optional[int] = None,
                precision: Optional[int] = None, scale: Optional[int] = None) -> TypeInfo:
        """Map a catalog (data_type, udt_name) pair to a TypeInfo.

        Deterministic: the same pair always yields the same logical type. Array
        columns are always element-qualified; an unrecognized element falls back
        to the raw udt_name with its leading underscore removed.
        """
        data_type_clean = (data_type or '').strip()

        if data_type_clean.upper() == 'ARRAY':
            return TypeRegistry.resolve_array(udt_name or '')

        logical = TypeRegistry.DATA_TYPES.get(data_type_clean.lower())
        if logical is None:
            # USER-DEFINED (enums, domains, extension types): keep the udt name
            return TypeInfo(LogicalType.UNKNOWN, raw_name=udt_name or data_type_clean or None)

        if logical in (LogicalType.VARCHAR, LogicalType.CHAR):
            return TypeInfo(logical, length=max_length)
        if logical == LogicalType.NUMERIC:
            return TypeInfo(logical, precision=precision, scale=scale)
        return TypeInfo(logical)

    @staticmethod
    def resolve_array(udt_name: str) -> TypeInfo:
        udt = udt_name.strip().lower()
        element_type = TypeRegistry.ARRAY_ELEMENTS.get(udt)
        if element_type is not None:
            element = TypeInfo(element_type)
        else:
            element = TypeInfo(LogicalType.UNKNOWN, raw_name=udt.lstrip('_') or 'text')
        return TypeInfo(LogicalType.ARRAY, element=element, raw_name=udt_name)

    @staticmethod
    def from_label(label: str) -> TypeInfo:
        """Build a TypeInfo from a label such as 'uuid[]' or 'jsonb'"""
        text = label.strip().lower()
        if text.endswith('[]'):
            element = TypeRegistry.from_label(text[:-2])
            return TypeInfo(LogicalType.ARRAY, element=element)
        for logical in LogicalType:
            if logical.value == text:
                return TypeInfo(logical)
        logical = TypeRegistry.DATA_TYPES.get(text)
        if logical is not None:
            return TypeInfo(logical)
        return TypeInfo(LogicalType.UNKNOWN, raw_name=text)
