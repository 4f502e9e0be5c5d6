"""
Connection validation: prove a connection string is reachable before any
migration work touches it.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

from core.errors import ConnectivityCategory, ConnectivityError, classify_connection_error, mask_credentials
from extensions.plugins.postgresql_adapter import ConnectionConfig, PostgreSQLAdapter

logger = logging.getLogger(__name__)

MAX_TIMEOUT_SECONDS = 15


@dataclass
class ValidationResult:
    ok: bool
    label: str
    category: Optional[str] = None
    detail: Optional[str] = None
    server_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def validate(connection_string: str, label: str = 'database', timeout: int = 10) -> ValidationResult:
    """Run SELECT NOW() on a fresh connection. Never raises.

    The connection is opened and closed here; nothing is kept for later use.
    """
    timeout = max(1, min(int(timeout), MAX_TIMEOUT_SECONDS))

    try:
        config = ConnectionConfig.from_url(connection_string, connect_timeout=timeout,
                                           statement_timeout_ms=timeout * 1000)
    except ValueError as e:
        detail = mask_credentials(f"Invalid {label} connection string: {e}")
        logger.error(detail)
        return ValidationResult(False, label, ConnectivityCategory.UNKNOWN.value, detail)

    adapter = PostgreSQLAdapter(config)
    try:
        adapter.connect()
        rows = adapter.fetch_all("SELECT NOW() AS now")
        server_time = rows[0]['now'] if rows else None
        logger.info(f"{label} connection OK ({config.describe()})")
        return ValidationResult(True, label, server_time=str(server_time) if server_time is not None else None)
    except ConnectivityError as e:
        return ValidationResult(False, label, e.category.value, f"{label}: {e.message}")
    except Exception as e:
        detail = mask_credentials(f"{label}: {e}")
        logger.error(f"{label} validation failed: {detail}")
        return ValidationResult(False, label, classify_connection_error(e).value, detail)
    finally:
        adapter.close()
