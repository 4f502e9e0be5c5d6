#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
dbshift Core Package Initialization
Exports the migration building blocks. The orchestrator and configuration
are imported from core.orchestrator and config.secure_config directly.
"""

from .errors import (
    ErrorCode,
    ConnectivityCategory,
    MigrationError,
    ConnectivityError,
    SchemaError,
    RowConversionError,
)
from .type_registry import LogicalType, TypeInfo, TypeRegistry
from .schema_ir import ColumnDescriptor, TableSpec
from .value_converter import convert, convert_row, parse_array_string
from .ddl import synthesize
from .bypass_policy import BypassPolicy, BypassRule
from .session_store import ProgressSessionStore, MigrationSession, SessionStatus, SessionType
from .notifications import MigrationCompletedEvent, NotificationDispatcher
from .connection_validator import validate, ValidationResult
from .introspector import SchemaIntrospector
from .table_copier import TableCopier, TableResult

__all__ = [
    # Errors
    'ErrorCode',
    'ConnectivityCategory',
    'MigrationError',
    'ConnectivityError',
    'SchemaError',
    'RowConversionError',

    # Types and schema model
    'LogicalType',
    'TypeInfo',
    'TypeRegistry',
    'ColumnDescriptor',
    'TableSpec',

    # Conversion and DDL
    'convert',
    'convert_row',
    'parse_array_string',
    'synthesize',

    # Migration components
    'BypassPolicy',
    'BypassRule',
    'ProgressSessionStore',
    'MigrationSession',
    'SessionStatus',
    'SessionType',
    'MigrationCompletedEvent',
    'NotificationDispatcher',
    'validate',
    'ValidationResult',
    'SchemaIntrospector',
    'TableCopier',
    'TableResult',
]

# Version info
__version__ = '1.0.0'
__description__ = 'dbshift - PostgreSQL schema and data migration engine'
