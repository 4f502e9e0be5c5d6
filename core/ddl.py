"""
DDL synthesis: CREATE TABLE statements from TableSpec.

Serial columns keep their nextval(...) default; the sequences behind them are
created before the table and attached to their column afterwards so
pg_get_serial_sequence() resolves on the target.
"""

import logging
import re
from typing import List, Optional, Tuple

from core.schema_ir import ColumnDescriptor, TableSpec
from core.value_converter import quote_literal

logger = logging.getLogger(__name__)

# Defaults that are function calls/keywords and must be emitted verbatim
GENERATOR_DEFAULTS = frozenset({
    'gen_random_uuid()',
    'uuid_generate_v4()',
    'now()',
    'current_timestamp',
    'current_date',
})

_NEXTVAL_RE = re.compile(r"^nextval\('((?:[^']|'')+)'", re.IGNORECASE)


def quote_identifier(name: str) -> str:
    """Double-quote an identifier, escaping embedded quotes"""
    return '"' + name.replace('"', '""') + '"'


def render_default(default_expr: Optional[str]) -> Optional[str]:
    """Render a catalog column_default for a DEFAULT clause, or None to omit it"""
    if default_expr is None:
        return None
    expr = str(default_expr).strip()
    if not expr:
        return None
    if expr.lower() in GENERATOR_DEFAULTS:
        return expr
    if expr.lower().startswith('nextval(') or '::' in expr:
        return expr
    return quote_literal(expr)


def sequence_name(default_expr: Optional[str]) -> Optional[str]:
    """Sequence referenced by a nextval('...') default, as written in the catalog"""
    if not default_expr:
        return None
    match = _NEXTVAL_RE.match(str(default_expr).strip())
    return match.group(1).replace("''", "'") if match else None


def serial_columns(spec: TableSpec) -> List[Tuple[str, str]]:
    """(column, sequence) for every column defaulting to nextval()"""
    pairs = []
    for column in spec.columns:
        sequence = sequence_name(column.default_expr)
        if sequence:
            pairs.append((column.name, sequence))
    return pairs


def sequence_statements(spec: TableSpec) -> Tuple[List[str], List[str]]:
    """(before, after) statements around CREATE TABLE for the table's sequences"""
    before, after = [], []
    for column, sequence in serial_columns(spec):
        before.append(f"CREATE SEQUENCE IF NOT EXISTS {sequence}")
        after.append(f"ALTER SEQUENCE {sequence} OWNED BY "
                     f"{quote_identifier(spec.name)}.{quote_identifier(column)}")
    return before, after


def column_definition(column: ColumnDescriptor) -> str:
    parts = [quote_identifier(column.name), column.logical_type.label]
    if not column.nullable:
        parts.append('NOT NULL')
    default = render_default(column.default_expr)
    if default is not None:
        parts.append(f"DEFAULT {default}")
    return ' '.join(parts)


def synthesize(spec: TableSpec, if_not_exists: bool = True) -> str:
    """Build a CREATE TABLE statement; column order follows spec.columns"""
    definitions = [column_definition(col) for col in spec.columns]
    if spec.primary_key:
        pk_cols = ', '.join(quote_identifier(c) for c in spec.primary_key)
        definitions.append(f"PRIMARY KEY ({pk_cols})")

    guard = 'IF NOT EXISTS ' if if_not_exists else ''
    body = ',\n  '.join(definitions)
    statement = f"CREATE TABLE {guard}{quote_identifier(spec.name)} (\n  {body}\n)"
    logger.debug(f"Synthesized DDL for {spec.name}: {len(spec.columns)} columns")
    return statement
