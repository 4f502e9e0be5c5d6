#!/usr/bin/env python3
"""
dbshift Value Converter

Renders a single source value as a SQL literal for the target database.

Dispatch order:
    1. None is always NULL, whatever the column type.
    2. json/jsonb columns are JSON-encoded and cast.
    3. Lists (or '{a,b}' brace strings) in array columns become typed ARRAY[...] literals.
    4. timestamp/timestamptz values are written as full ISO-8601.
    5. date values are truncated to YYYY-MM-DD.
    6. Any other dict or list is written as ::jsonb.
    7. Everything else is stringified and quoted.

Steps 2-5 are selected through CONVERTERS, keyed by LogicalType. A converter that
does not recognize the value's shape hands it to the scalar fallback (steps 6-7).
"""

import json
import re
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from core.errors import RowConversionError
from core.schema_ir import ColumnDescriptor, TableSpec
from core.type_registry import LogicalType, TypeInfo

NULL = 'NULL'

_ISO_DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}')


def quote_literal(text: str) -> str:
    """Single-quote a string, doubling embedded quotes"""
    return "'" + str(text).replace("'", "''") + "'"


def _json_text(value: Any) -> str:
    return json.dumps(value, default=_json_default)


def _json_default(value):
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


def parse_array_string(text: str) -> Optional[List[Any]]:
    """Parse PostgreSQL's brace-delimited array text ('{a,"b c",NULL}').

    Returns None when the text is not brace-delimited. Double-quoted elements are
    unquoted (backslash escapes honored), unquoted NULL becomes None, unquoted
    elements are trimmed. Nested arrays ('{{1,2},{3,4}}') come back as nested lists.
    """
    stripped = text.strip()
    if len(stripped) < 2 or stripped[0] != '{' or stripped[-1] != '}':
        return None

    body = stripped[1:-1]
    if not body.strip():
        return []

    items: List[Any] = []
    current: List[str] = []
    quoted = False
    nested = False
    in_quotes = False
    escaped = False
    depth = 0

    def flush():
        token = ''.join(current)
        if quoted:
            items.append(token)
        elif nested:
            inner = parse_array_string(token)
            items.append(inner if inner is not None else token.strip())
        else:
            token = token.strip()
            items.append(None if token.upper() == 'NULL' else token)

    for char in body:
        if escaped:
            current.append(char)
            escaped = False
        elif in_quotes:
            if char == '\\':
                escaped = True
                if depth:
                    current.append(char)
            elif char == '"':
                in_quotes = False
                if depth:
                    current.append(char)
            else:
                current.append(char)
        elif char == '"':
            in_quotes = True
            if depth:
                # nested element text is kept raw for the recursive parse
                current.append(char)
            else:
                quoted = True
                # drop whitespace that preceded the opening quote
                current = []
        elif char == '{':
            depth += 1
            nested = True
            current.append(char)
        elif char == '}':
            depth -= 1
            current.append(char)
        elif char == ',' and depth == 0:
            flush()
            current = []
            quoted = False
            nested = False
        elif quoted and char.isspace():
            # whitespace between the closing quote and the comma
            continue
        else:
            current.append(char)

    flush()
    return items


def _is_json(type_info: Optional[TypeInfo]) -> bool:
    return type_info is not None and type_info.logical in (LogicalType.JSON, LogicalType.JSONB)


def _array_body(elements: List[Any], element: TypeInfo, from_text: bool) -> str:
    return 'ARRAY[' + ','.join(_array_element(item, element, from_text) for item in elements) + ']'


def _array_element(value: Any, element: TypeInfo, from_text: bool = False) -> str:
    """Render one array element.

    from_text marks elements parsed out of brace text: there a list is always a
    sub-array and json elements are already JSON text.
    """
    if value is None:
        return NULL
    if isinstance(value, tuple):
        value = list(value)
    if isinstance(value, list) and (from_text or not _is_json(element)):
        return _array_body(value, element, from_text)
    if _is_json(element):
        if from_text and isinstance(value, str):
            return quote_literal(value)
        return quote_literal(_json_text(value))
    if isinstance(value, bool):
        return quote_literal('true' if value else 'false')
    if isinstance(value, (dict, list)):
        return quote_literal(_json_text(value))
    if isinstance(value, (datetime, date, time)):
        return quote_literal(value.isoformat())
    return quote_literal(str(value))


def _convert_json(value: Any, type_info: TypeInfo) -> str:
    return f"{quote_literal(_json_text(value))}::{type_info.base_name}"


def _convert_array(value: Any, type_info: TypeInfo) -> str:
    elements = value
    from_text = isinstance(value, str)
    if from_text:
        elements = parse_array_string(value)
    elif isinstance(value, tuple):
        elements = list(value)

    if not isinstance(elements, list):
        return _convert_scalar(value, type_info)

    return f"{_array_body(elements, type_info.element, from_text)}::{type_info.base_name}"


def _convert_timestamp(value: Any, type_info: TypeInfo) -> str:
    if isinstance(value, (datetime, date)):
        return quote_literal(value.isoformat())
    if isinstance(value, str):
        return quote_literal(value)
    return _convert_scalar(value, type_info)


def _convert_date(value: Any, type_info: TypeInfo) -> str:
    if isinstance(value, datetime):
        return quote_literal(value.date().isoformat())
    if isinstance(value, date):
        return quote_literal(value.isoformat())
    if isinstance(value, str):
        match = _ISO_DATE_RE.match(value.strip())
        if match:
            return quote_literal(match.group(0))
        return quote_literal(value)
    return _convert_scalar(value, type_info)


def _convert_bytea(value: Any, type_info: TypeInfo) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "'\\x" + bytes(value).hex() + "'::bytea"
    return _convert_scalar(value, type_info)


def _convert_scalar(value: Any, type_info: TypeInfo) -> str:
    if isinstance(value, (dict, list)):
        return f"{quote_literal(_json_text(value))}::jsonb"
    if isinstance(value, bool):
        return quote_literal('true' if value else 'false')
    if isinstance(value, (datetime, date, time)):
        return quote_literal(value.isoformat())
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "'\\x" + bytes(value).hex() + "'::bytea"
    return quote_literal(str(value))


CONVERTERS: Dict[LogicalType, Callable[[Any, TypeInfo], str]] = {
    LogicalType.JSON: _convert_json,
    LogicalType.JSONB: _convert_json,
    LogicalType.ARRAY: _convert_array,
    LogicalType.TIMESTAMP: _convert_timestamp,
    LogicalType.TIMESTAMPTZ: _convert_timestamp,
    LogicalType.DATE: _convert_date,
    LogicalType.BYTEA: _convert_bytea,
}


def convert(value: Any, column: Union[ColumnDescriptor, TypeInfo]) -> str:
    """Render value as a SQL literal for the given column (or bare TypeInfo)"""
    if value is None:
        return NULL

    if isinstance(column, ColumnDescriptor):
        type_info, column_name = column.logical_type, column.name
    else:
        type_info, column_name = column, None

    converter = CONVERTERS.get(type_info.logical, _convert_scalar)
    try:
        return converter(value, type_info)
    except (TypeError, ValueError, AttributeError, UnicodeError) as e:
        raise RowConversionError(
            f"Cannot convert value for column {column_name or type_info.label}: {e}",
            column=column_name,
            details={'type': type_info.label, 'python_type': type(value).__name__},
        ) from e


def convert_row(row: Mapping[str, Any], spec: TableSpec) -> List[str]:
    """Literals for every column of spec, in column order; missing keys become NULL"""
    return [convert(row.get(col.name), col) for col in spec.columns]
