#!/usr/bin/env python3
"""
dbshift Migration Orchestrator

Drives one migration session:

    validate connections -> [schema push] -> [data copy] -> post steps -> finish

- Either connection failing validation ends the session in `error` before any
  target table is touched.
- Schema push is idempotent (CREATE TABLE IF NOT EXISTS); a table whose DDL
  fails is recorded and the push continues.
- Data copy runs tables sequentially in plan order: configured priority tables
  present in the source, then (optionally) the remaining source tables
  alphabetically. Bypassed tables are filtered out up front and reported as
  completed with zero rows.
- Cancellation is honored between tables; a table copy in progress finishes.
- Every terminal state emits a MigrationCompletedEvent.
"""

import copy
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import psycopg2

from config.secure_config import DBShiftConfig, get_config
from core.bypass_policy import BypassPolicy
from core.connection_validator import validate
from core.ddl import quote_identifier, sequence_statements, synthesize
from core.errors import ConnectivityError, SchemaError, mask_credentials
from core.introspector import SchemaIntrospector
from core.notifications import MigrationCompletedEvent, NotificationDispatcher, logging_sink
from core.schema_ir import TableSpec
from core.session_store import ProgressSessionStore, SessionType
from core.table_copier import TableCopier, TableResult
from extensions.plugins.postgresql_adapter import ConnectionConfig, create_adapter_from_url

logger = logging.getLogger(__name__)


def describe_url(url: str) -> str:
    """host:port/db for metadata; falls back to the masked URL when unparsable"""
    try:
        return ConnectionConfig.from_url(url).describe()
    except ValueError:
        return mask_credentials(url)


class MigrationOrchestrator:
    def __init__(self, store: ProgressSessionStore, config: Optional[DBShiftConfig] = None,
                 dispatcher: Optional[NotificationDispatcher] = None,
                 adapter_factory: Callable = create_adapter_from_url,
                 validator: Callable = validate):
        self.store = store
        self.config = config or get_config()
        self.dispatcher = dispatcher or NotificationDispatcher([logging_sink])
        self.adapter_factory = adapter_factory
        self.validator = validator
        self.bypass_policy = BypassPolicy.from_config(self.config.bypass_rules)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def start(self, mode: str = 'full') -> str:
        """Create a running session and return its id; run() does the work"""
        session = self.store.create(SessionType(mode))
        return session.session_id

    def migrate(self, source_url: str, target_url: str, mode: str = 'full'):
        """Synchronous start + run; returns the final session snapshot"""
        session_id = self.start(mode)
        return self.run(session_id, source_url, target_url, mode)

    def run(self, session_id: str, source_url: str, target_url: str, mode: Optional[str] = None):
        session = self.store.get(session_id)
        if session is None:
            raise KeyError(f"Unknown session {session_id}")
        mode = SessionType(mode) if mode else session.type

        started = time.time()
        metadata = self._initial_metadata(source_url, target_url, mode)
        source = target = None

        try:
            self._stage(session_id, "Validating connections", "Checking source and target connectivity")
            failure = self._validate_connections(session_id, source_url, target_url, metadata)
            if failure:
                detail, category = failure
                return self._finalize(session_id, metadata, started, error=detail, category=category)

            source = self.adapter_factory(source_url)
            target = self.adapter_factory(target_url)
            source.connect()
            target.connect()

            introspector = SchemaIntrospector(source, self.config.schema)
            source_tables = introspector.list_tables()
            metadata['totalTables'] = len(source_tables)
            specs: Dict[str, TableSpec] = {}

            plan: List[str] = []
            bypassed = []
            if mode in (SessionType.DATA, SessionType.FULL):
                plan, bypassed = self._build_plan(session_id, source_tables)

            total = len(plan) + len(bypassed)
            if mode in (SessionType.SCHEMA, SessionType.FULL):
                total += len(source_tables)
            self.store.update(session_id, total_items=total)

            if mode in (SessionType.SCHEMA, SessionType.FULL):
                if not self._push_schema(session_id, introspector, target, source_tables, specs, metadata):
                    return self._finalize(session_id, metadata, started, cancelled=True)

            if mode in (SessionType.DATA, SessionType.FULL):
                copier = TableCopier(source, target, self.bypass_policy, introspector,
                                     order_column=self.config.order_column,
                                     max_recorded_errors=self.config.max_recorded_errors)
                for rule in bypassed:
                    self._record_bypass(session_id, rule, metadata)
                if not self._copy_tables(session_id, copier, introspector, plan, specs, metadata):
                    return self._finalize(session_id, metadata, started, cancelled=True)
                self._post_migration(session_id, source, target, specs, metadata)

            return self._finalize(session_id, metadata, started)

        except ConnectivityError as e:
            self._log(session_id, f"Connection lost: {e.message}", logging.ERROR)
            return self._finalize(session_id, metadata, started, error=e.message, category=e.category.value)
        except Exception as e:
            message = mask_credentials(f"{type(e).__name__}: {e}")
            logger.exception(f"Migration {session_id} failed")
            self._log(session_id, f"Migration failed: {message}", logging.ERROR)
            return self._finalize(session_id, metadata, started, error=message)
        finally:
            for adapter in (source, target):
                if adapter is not None:
                    adapter.close()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _validate_connections(self, session_id: str, source_url: str, target_url: str,
                              metadata: Dict[str, Any]) -> Optional[Tuple[str, str]]:
        """Returns (detail, category) when either side is unreachable"""
        failures = []
        for label, url in (('source', source_url), ('target', target_url)):
            result = self.validator(url, label, timeout=self.config.validation_timeout)
            metadata['validation'][label] = result.to_dict()
            if result.ok:
                self._log(session_id, f"{label.capitalize()} connection verified")
            else:
                self._log(session_id, f"{label.capitalize()} connection failed: {result.detail}", logging.ERROR)
                failures.append(result)

        if not failures:
            return None

        detail = '; '.join(r.detail or f"{r.label} unreachable" for r in failures)
        return detail, failures[0].category

    def _build_plan(self, session_id: str, source_tables: List[str]) -> Tuple[List[str], list]:
        available = set(source_tables)
        ordered: List[str] = []
        for table in self.config.priority_tables:
            if table in available:
                if table not in ordered:
                    ordered.append(table)
            else:
                self._log(session_id, f"Priority table {table} not found in source, skipping")

        if self.config.copy_unlisted_tables:
            ordered.extend(sorted(t for t in source_tables if t not in ordered))

        to_copy, bypassed = self.bypass_policy.partition(ordered)
        self._log(session_id, f"Migration plan: {len(to_copy)} tables to copy, {len(bypassed)} bypassed")
        return to_copy, bypassed

    def _push_schema(self, session_id: str, introspector: SchemaIntrospector, target,
                     tables: List[str], specs: Dict[str, TableSpec], metadata: Dict[str, Any]) -> bool:
        schema_meta = metadata['schema']
        for index, table in enumerate(tables, 1):
            if self.store.is_cancelled(session_id):
                self._log(session_id, "Cancelled during schema push")
                return False

            self._stage(session_id, "Creating schema", f"Creating table {table} ({index}/{len(tables)})")
            try:
                spec = specs.get(table) or introspector.introspect(table)
                specs[table] = spec
                before, after = sequence_statements(spec)
                try:
                    for statement in before + [synthesize(spec, if_not_exists=True)] + after:
                        target.execute(statement)
                except psycopg2.Error as e:
                    raise SchemaError(f"Failed to create {table}: {str(e).strip()}", table=table) from e
                schema_meta['tablesCreated'].append(table)
                metadata['totalColumns'] += len(spec.columns)
            except SchemaError as e:
                schema_meta['tablesFailed'].append({'table': table, 'error': e.message})
                self._log(session_id, e.message, logging.WARNING)

            self._advance(session_id, metadata)

        self._log(session_id, f"Schema push finished: {len(schema_meta['tablesCreated'])} created, "
                              f"{len(schema_meta['tablesFailed'])} failed")
        return True

    def _record_bypass(self, session_id: str, rule, metadata: Dict[str, Any]):
        result = TableResult.for_bypass(rule.table, rule.reason)
        metadata['tableResults'][rule.table] = result.to_dict()
        metadata['tablesCompleted'].append(rule.table)
        metadata['tablesBypassed'].append({'table': rule.table, 'reason': rule.reason})
        self._log(session_id, f"Bypassed {rule.table}: {rule.reason}")
        self._advance(session_id, metadata)

    def _copy_tables(self, session_id: str, copier: TableCopier, introspector: SchemaIntrospector,
                     plan: List[str], specs: Dict[str, TableSpec], metadata: Dict[str, Any]) -> bool:
        def on_progress(table, done, total):
            self.store.update(session_id, current_job=f"Migrating {table}: {done}/{total} rows")

        for index, table in enumerate(plan, 1):
            if self.store.is_cancelled(session_id):
                self._log(session_id, f"Cancelled before {table}")
                return False

            self._stage(session_id, "Migrating data", f"Migrating {table} ({index}/{len(plan)})")
            try:
                spec = specs.get(table) or introspector.introspect(table)
                specs[table] = spec
                result = copier.copy_table(table, spec, on_progress=on_progress)
            except SchemaError as e:
                result = TableResult.for_failure(table, e.message)
                metadata['tablesFailed'].append(table)
                self._log(session_id, f"Table {table} failed: {e.message}", logging.WARNING)
            else:
                metadata['tablesCompleted'].append(table)
                metadata['totalRowsMigrated'] += result.migrated
                metadata['totalRowsSkipped'] += result.skipped
                self._log(session_id, f"{table}: {result.migrated}/{result.attempted} rows migrated")

            metadata['tableResults'][table] = result.to_dict()
            self._advance(session_id, metadata)
        return True

    def _post_migration(self, session_id: str, source, target, specs: Dict[str, TableSpec],
                        metadata: Dict[str, Any]):
        copied = [r['table'] for r in metadata['tableResults'].values() if r['status'] == 'completed']
        self._stage(session_id, "Finalizing", "Running post-migration steps")

        if self.config.reset_sequences:
            for table in copied:
                spec = specs.get(table)
                if spec is None or spec.get_column('id') is None:
                    continue
                try:
                    rows = target.fetch_all("SELECT pg_get_serial_sequence(%s, 'id') AS seq",
                                            (quote_identifier(table),))
                    sequence = rows[0]['seq'] if rows else None
                    if not sequence:
                        continue
                    target.fetch_all(
                        f"SELECT setval(%s, COALESCE((SELECT MAX(\"id\") FROM {quote_identifier(table)}), 0) + 1, false)",
                        (sequence,),
                    )
                    metadata['sequencesReset'].append(sequence)
                except (psycopg2.Error, ConnectivityError) as e:
                    self._log(session_id, f"Sequence reset for {table} failed: {e}", logging.WARNING)

        if self.config.verify_counts:
            for table in copied:
                try:
                    source_count = self._count(source, table)
                    target_count = self._count(target, table)
                except (psycopg2.Error, ConnectivityError) as e:
                    self._log(session_id, f"Row count check for {table} failed: {e}", logging.WARNING)
                    continue
                match = source_count == target_count
                metadata['rowCounts'][table] = {'source': source_count, 'target': target_count, 'match': match}
                if not match:
                    self._log(session_id, f"Row count mismatch for {table}: source={source_count}, "
                                          f"target={target_count}", logging.WARNING)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _count(adapter, table: str) -> int:
        rows = adapter.fetch_all(f"SELECT COUNT(*) AS count FROM {quote_identifier(table)}")
        return int(rows[0]['count']) if rows else 0

    def _initial_metadata(self, source_url: str, target_url: str, mode: SessionType) -> Dict[str, Any]:
        return {
            'sourceDatabase': describe_url(source_url),
            'targetDatabase': describe_url(target_url),
            'mode': mode.value,
            'totalSchemas': 1,
            'totalTables': 0,
            'totalColumns': 0,
            'totalRowsMigrated': 0,
            'totalRowsSkipped': 0,
            'tablesCompleted': [],
            'tablesFailed': [],
            'tablesBypassed': [],
            'tableResults': {},
            'schema': {'tablesCreated': [], 'tablesFailed': []},
            'sequencesReset': [],
            'rowCounts': {},
            'validation': {},
            'startTime': datetime.now(timezone.utc).isoformat(),
            'endTime': None,
            'duration': None,
        }

    def _stage(self, session_id: str, stage: str, job: str):
        self.store.update(session_id, stage=stage, current_job=job)

    def _advance(self, session_id: str, metadata: Dict[str, Any]):
        """One more item done; publishes the metadata gathered so far"""
        session = self.store.get(session_id)
        if session is None:
            return
        completed = session.completed_items + 1
        total = max(session.total_items, completed)
        self.store.update(session_id, completed_items=completed,
                          progress=int(completed * 100 / total) if total else 100,
                          migration_metadata=copy.deepcopy(metadata))

    def _log(self, session_id: str, message: str, level: int = logging.INFO):
        logger.log(level, f"[{session_id}] {message}")
        self.store.append_log(session_id, message)

    def _finalize(self, session_id: str, metadata: Dict[str, Any], started: float,
                  error: Optional[str] = None, category: Optional[str] = None, cancelled: bool = False):
        metadata['endTime'] = datetime.now(timezone.utc).isoformat()
        metadata['duration'] = round(time.time() - started, 3)

        if error is not None:
            self.store.fail(session_id, error, category=category, metadata=metadata)
        elif cancelled:
            self.store.mark_cancelled(session_id, metadata=metadata)
        else:
            self.store.complete(session_id, metadata=metadata)

        session = self.store.get(session_id)
        if session is not None and session.status.is_terminal:
            self.dispatcher.dispatch(MigrationCompletedEvent(
                session_id=session_id,
                status=session.status.value,
                migration_metadata=session.migration_metadata or {},
            ))
        return session
