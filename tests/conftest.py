#!/usr/bin/env python3
"""
dbshift Test Configuration - PyTest Configuration and Fixtures

Shared fixtures: a scripted fake source/target database built on MagicMock,
catalog row builders, and a clean configuration that ignores the caller's
environment. No live PostgreSQL is needed.
"""

import os
import sys
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.secure_config import DBShiftConfig


def catalog_row(name: str, data_type: str = 'text', udt_name: Optional[str] = None,
                nullable: bool = True, default: Optional[str] = None,
                max_length: Optional[int] = None) -> Dict[str, Any]:
    """One information_schema.columns row"""
    return {
        'column_name': name,
        'data_type': data_type,
        'udt_name': udt_name or data_type,
        'is_nullable': 'YES' if nullable else 'NO',
        'column_default': default,
        'character_maximum_length': max_length,
        'numeric_precision': None,
        'numeric_scale': None,
    }


class FakeDatabase:
    """Scripted stand-in for a PostgreSQLAdapter.

    tables: {name: {'columns': [catalog_row...], 'rows': [dict...], 'pk': [...]}}
    Every execute() call is recorded in `executed`; fetch_all() is routed by SQL text.
    """

    def __init__(self, tables: Optional[Dict[str, Dict[str, Any]]] = None):
        self.tables = tables or {}
        self.executed: List[str] = []
        self.adapter = MagicMock(name='adapter')
        self.adapter.fetch_all.side_effect = self._fetch_all
        self.adapter.execute.side_effect = self._execute
        self.adapter.is_closed = False
        self.insert_failures: Dict[int, Exception] = {}
        self._insert_count = 0

    def _fetch_all(self, sql, params=None):
        text = ' '.join(sql.split())
        if 'FROM information_schema.tables' in text:
            return [{'table_name': name} for name in sorted(self.tables)]
        if 'FROM information_schema.columns' in text:
            table = params[1]
            return list(self.tables.get(table, {}).get('columns', []))
        if "constraint_type = 'PRIMARY KEY'" in text:
            table = params[1]
            return [{'column_name': c} for c in self.tables.get(table, {}).get('pk', [])]
        if text.startswith('SELECT * FROM'):
            table = text.split('"')[1]
            return [dict(r) for r in self.tables[table]['rows']]
        if 'COUNT(*)' in text:
            table = text.split('"')[1]
            return [{'count': len(self.tables.get(table, {}).get('rows', []))}]
        if 'pg_get_serial_sequence' in text:
            return [{'seq': None}]
        if text.startswith('SELECT NOW()'):
            return [{'now': '2026-01-01T00:00:00+00:00'}]
        return []

    def _execute(self, sql, params=None):
        self.executed.append(sql)
        if sql.startswith('INSERT INTO'):
            index = self._insert_count
            self._insert_count += 1
            if index in self.insert_failures:
                raise self.insert_failures[index]
        return 1

    def statements(self, prefix: str) -> List[str]:
        return [s for s in self.executed if s.startswith(prefix)]


@pytest.fixture
def fake_database():
    """Factory for FakeDatabase instances"""
    return FakeDatabase


@pytest.fixture
def users_table():
    """users table with three rows, one of them with a null email"""
    return {
        'columns': [
            catalog_row('id', 'uuid', nullable=False, default='gen_random_uuid()'),
            catalog_row('email', 'character varying', 'varchar', max_length=255),
            catalog_row('tags', 'ARRAY', '_text'),
            catalog_row('created_at', 'timestamp with time zone', 'timestamptz', default='now()'),
        ],
        'pk': ['id'],
        'rows': [
            {'id': '00000000-0000-0000-0000-000000000001', 'email': 'a@example.com', 'tags': ['a', 'b'], 'created_at': None},
            {'id': '00000000-0000-0000-0000-000000000002', 'email': None, 'tags': '{"a","b"}', 'created_at': None},
            {'id': '00000000-0000-0000-0000-000000000003', 'email': "o'brien@example.com", 'tags': [], 'created_at': None},
        ],
    }


@pytest.fixture
def clean_env(monkeypatch):
    """Remove dbshift settings from the environment"""
    for key in list(os.environ):
        if key.startswith('DBSHIFT_') or key in ('DATABASE_URL', 'TARGET_DATABASE_URL'):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def test_config(clean_env):
    """Configuration with sequence/count post steps disabled and no unlisted-table copy surprises"""
    config = DBShiftConfig()
    config.priority_tables = ['integrations', 'users']
    config.bypass_rules = {'scheduled_reports': 'complex foreign key dependencies'}
    config.reset_sequences = False
    config.verify_counts = False
    return config


def pytest_configure(config):
    """Configure custom pytest markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that test individual components"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that test component interaction"
    )
    config.addinivalue_line(
        "markers", "api: REST API tests"
    )
