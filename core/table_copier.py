#!/usr/bin/env python3
"""
dbshift Table Copier

Copies one table from source to target:
    1. Bypass check (policy tables are reported, never touched)
    2. Fetch every source row, ordered by created_at when the column exists
    3. Clear the target table (DELETE FROM)
    4. Insert rows one at a time; a failing row is recorded and skipped

Partial failure never raises. Connection loss raises ConnectivityError and an
unreadable or uncleanable table raises SchemaError.
"""

import logging
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional

import psycopg2

from core.bypass_policy import BypassPolicy
from core.ddl import quote_identifier
from core.errors import ConnectivityError, ErrorCode, RowConversionError, SchemaError, mask_credentials
from core.introspector import SchemaIntrospector
from core.schema_ir import TableSpec
from core.value_converter import convert_row

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]


@dataclass
class RowError:
    row_index: int
    error: str
    error_code: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TableResult:
    """Outcome of one table copy"""
    table: str
    attempted: int = 0
    migrated: int = 0
    skipped: int = 0
    errors: List[RowError] = field(default_factory=list)
    bypassed: bool = False
    reason: Optional[str] = None
    status: str = 'completed'  # completed, bypassed, failed
    duration_ms: int = 0

    @property
    def error_count(self) -> int:
        return self.skipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            'table': self.table,
            'attempted': self.attempted,
            'migrated': self.migrated,
            'skipped': self.skipped,
            'errors': [e.to_dict() for e in self.errors],
            'bypassed': self.bypassed,
            'reason': self.reason,
            'status': self.status,
            'durationMs': self.duration_ms,
        }

    @classmethod
    def for_bypass(cls, table: str, reason: str) -> 'TableResult':
        return cls(table=table, bypassed=True, reason=reason, status='bypassed')

    @classmethod
    def for_failure(cls, table: str, reason: str) -> 'TableResult':
        return cls(table=table, reason=reason, status='failed')


class TableCopier:
    """Moves rows for a single table between two PostgreSQLAdapters"""

    def __init__(self, source, target, bypass_policy: Optional[BypassPolicy] = None,
                 introspector: Optional[SchemaIntrospector] = None,
                 order_column: str = 'created_at', max_recorded_errors: int = 100,
                 progress_interval: int = 100):
        self.source = source
        self.target = target
        self.bypass_policy = bypass_policy or BypassPolicy()
        self.introspector = introspector or SchemaIntrospector(source)
        self.order_column = order_column
        self.max_recorded_errors = max_recorded_errors
        self.progress_interval = progress_interval

    def copy_table(self, table: str, spec: Optional[TableSpec] = None,
                   on_progress: Optional[ProgressCallback] = None) -> TableResult:
        start_time = time.time()

        if self.bypass_policy.is_bypassed(table):
            reason = self.bypass_policy.reason_for(table)
            logger.info(f"Bypassing {table}: {reason}")
            return TableResult.for_bypass(table, reason)

        if spec is None:
            spec = self.introspector.introspect(table)

        rows = self._fetch_rows(table, spec)
        self._clear_target(table)

        result = TableResult(table=table)
        insert_prefix = self._insert_prefix(spec)

        for index, row in enumerate(rows):
            result.attempted += 1
            try:
                literals = convert_row(row, spec)
                self.target.execute(f"{insert_prefix} ({', '.join(literals)})")
                result.migrated += 1
            except ConnectivityError:
                raise
            except RowConversionError as e:
                self._record_error(result, index, e.message, ErrorCode.ROW_CONVERSION_ERROR)
            except psycopg2.Error as e:
                self._record_error(result, index, str(e).strip(), ErrorCode.ROW_INSERT_ERROR)

            if on_progress and result.attempted % self.progress_interval == 0:
                on_progress(table, result.attempted, len(rows))

        result.skipped = result.attempted - result.migrated
        result.duration_ms = int((time.time() - start_time) * 1000)

        if result.skipped:
            logger.warning(f"{table}: migrated {result.migrated}/{result.attempted} rows ({result.skipped} failed)")
        else:
            logger.info(f"{table}: migrated {result.migrated}/{result.attempted} rows")
        return result

    def _fetch_rows(self, table: str, spec: TableSpec) -> List[Dict[str, Any]]:
        base_query = f"SELECT * FROM {quote_identifier(table)}"

        if self.order_column and spec.get_column(self.order_column) is not None:
            try:
                return self.source.fetch_all(f"{base_query} ORDER BY {quote_identifier(self.order_column)} ASC")
            except ConnectivityError:
                raise
            except psycopg2.Error as e:
                logger.warning(f"Ordered read of {table} failed, falling back to unordered: {e}")

        try:
            return self.source.fetch_all(base_query)
        except ConnectivityError:
            raise
        except psycopg2.Error as e:
            raise SchemaError(f"Failed to read {table}: {e}", table=table) from e

    def _clear_target(self, table: str):
        try:
            deleted = self.target.execute(f"DELETE FROM {quote_identifier(table)}")
            logger.debug(f"Cleared {deleted} existing rows from target {table}")
        except ConnectivityError:
            raise
        except psycopg2.Error as e:
            raise SchemaError(f"Failed to clear target table {table}: {e}", table=table) from e

    @staticmethod
    def _insert_prefix(spec: TableSpec) -> str:
        columns = ', '.join(quote_identifier(name) for name in spec.column_names)
        return f"INSERT INTO {quote_identifier(spec.name)} ({columns}) VALUES"

    def _record_error(self, result: TableResult, index: int, message: str, code: ErrorCode):
        message = mask_credentials(message)
        if len(result.errors) < self.max_recorded_errors:
            result.errors.append(RowError(row_index=index, error=message, error_code=code.value))
        if result.attempted - result.migrated <= 5:
            logger.warning(f"{result.table} row {index} failed: {message}")
