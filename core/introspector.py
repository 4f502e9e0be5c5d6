"""
Schema introspection against information_schema / pg_catalog.
"""

import logging
from typing import List, Optional

import psycopg2

from core.errors import SchemaError
from core.schema_ir import ColumnDescriptor, TableSpec
from core.type_registry import TypeRegistry

logger = logging.getLogger(__name__)

TABLES_QUERY = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = %s
    AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

COLUMNS_QUERY = """
    SELECT
        column_name,
        data_type,
        udt_name,
        is_nullable,
        column_default,
        character_maximum_length,
        numeric_precision,
        numeric_scale
    FROM information_schema.columns
    WHERE table_schema = %s
    AND table_name = %s
    ORDER BY ordinal_position
"""

PRIMARY_KEY_QUERY = """
    SELECT kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
        ON tc.constraint_name = kcu.constraint_name
        AND tc.table_schema = kcu.table_schema
        AND tc.table_name = kcu.table_name
    WHERE tc.constraint_type = 'PRIMARY KEY'
    AND tc.table_schema = %s
    AND tc.table_name = %s
    ORDER BY kcu.ordinal_position
"""


class SchemaIntrospector:
    """Reads table definitions from a source database through a PostgreSQLAdapter"""

    def __init__(self, adapter, schema: str = 'public'):
        self.adapter = adapter
        self.schema = schema

    def list_tables(self) -> List[str]:
        """Base tables in the schema, in name order"""
        try:
            rows = self.adapter.fetch_all(TABLES_QUERY, (self.schema,))
        except psycopg2.Error as e:
            raise SchemaError(f"Failed to list tables: {e}") from e
        tables = [row['table_name'] for row in rows]
        logger.debug(f"Found {len(tables)} tables in schema {self.schema}")
        return tables

    def primary_key(self, table_name: str) -> List[str]:
        """Primary key columns in key order (empty when the table has none)"""
        try:
            rows = self.adapter.fetch_all(PRIMARY_KEY_QUERY, (self.schema, table_name))
        except psycopg2.Error as e:
            logger.warning(f"Could not read primary key for {table_name}: {e}")
            return []
        return [row['column_name'] for row in rows]

    def introspect(self, table_name: str) -> TableSpec:
        """Build the TableSpec for one table; raises SchemaError when it has no columns"""
        try:
            rows = self.adapter.fetch_all(COLUMNS_QUERY, (self.schema, table_name))
        except psycopg2.Error as e:
            raise SchemaError(f"Failed to introspect {table_name}: {e}", table=table_name) from e

        if not rows:
            raise SchemaError(f"Table {table_name} not found or has no columns", table=table_name)

        columns = tuple(self._describe(row) for row in rows)
        spec = TableSpec(
            name=table_name,
            columns=columns,
            primary_key=tuple(self.primary_key(table_name)),
        )
        logger.debug(f"Introspected {table_name}: {len(columns)} columns, pk={list(spec.primary_key)}")
        return spec

    @staticmethod
    def _describe(row) -> ColumnDescriptor:
        max_length = _as_int(row.get('character_maximum_length'))
        type_info = TypeRegistry.resolve(
            row['data_type'],
            row.get('udt_name'),
            max_length=max_length,
            precision=_as_int(row.get('numeric_precision')),
            scale=_as_int(row.get('numeric_scale')),
        )
        return ColumnDescriptor(
            name=row['column_name'],
            raw_data_type=row['data_type'],
            udt_name=row.get('udt_name') or '',
            logical_type=type_info,
            nullable=str(row.get('is_nullable', 'YES')).upper() == 'YES',
            default_expr=row.get('column_default'),
            max_length=max_length,
        )


def _as_int(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
