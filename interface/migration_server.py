#!/usr/bin/env python3
"""
dbshift Migration Server

FastAPI surface over the Progress Session Store:
- POST /migrations                       start a migration (runs in the background)
- GET  /migration-progress/{session_id}  poll a session snapshot
- GET  /migrations                       list sessions
- POST /migrations/{session_id}/cancel   request cancellation
- GET  /health                           liveness
- WS   /ws                               push channel; send {"type": "subscribe", "sessionId": ...}

Unknown session ids are not an error when polling: the client may poll before
the background task has registered anything, so the reply is a 200 with
status "not_found".
"""

import asyncio
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Set

from fastapi import FastAPI, HTTPException, BackgroundTasks, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from pydantic import BaseModel

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config.secure_config import DBShiftConfig, get_config
from core.orchestrator import MigrationOrchestrator
from core.session_store import ProgressSessionStore, SessionType, SessionStatus

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# Pydantic models
class MigrationRequest(BaseModel):
    """Start-migration request; connection strings fall back to configuration"""
    sourceConnectionString: Optional[str] = None
    targetConnectionString: Optional[str] = None
    mode: SessionType = SessionType.FULL


class MigrationStartResponse(BaseModel):
    success: bool
    sessionId: str
    message: str
    status: str


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    uptime: float
    sessions: Dict[str, int]


def not_found_snapshot(session_id: str) -> Dict[str, Any]:
    return {
        'sessionId': session_id,
        'status': 'not_found',
        'stage': 'Initializing',
        'currentJob': '',
        'progress': 0,
        'totalItems': 0,
        'completedItems': 0,
        'logs': [],
        'migrationMetadata': None,
    }


def create_app(store: Optional[ProgressSessionStore] = None,
               orchestrator: Optional[MigrationOrchestrator] = None,
               config: Optional[DBShiftConfig] = None) -> FastAPI:
    """Create and configure FastAPI application"""
    config = config or get_config()
    store = store or ProgressSessionStore()
    orchestrator = orchestrator or MigrationOrchestrator(store, config)
    started = time.time()

    app = FastAPI(
        title="dbshift",
        description="PostgreSQL schema and data migration service",
        version=VERSION,
    )
    app.state.store = store
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        counts: Dict[str, int] = {status.value: 0 for status in SessionStatus}
        for session in store.list():
            counts[session.status.value] += 1
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(timezone.utc).isoformat(),
            version=VERSION,
            uptime=time.time() - started,
            sessions=counts,
        )

    @app.post("/migrations", response_model=MigrationStartResponse)
    async def start_migration(request: MigrationRequest, background_tasks: BackgroundTasks):
        source_url = request.sourceConnectionString or config.source_url
        target_url = request.targetConnectionString or config.target_url
        if not source_url or not target_url:
            raise HTTPException(status_code=400, detail="Source and target connection strings are required")

        session_id = orchestrator.start(request.mode.value)
        background_tasks.add_task(orchestrator.run, session_id, source_url, target_url, request.mode.value)
        logger.info(f"Queued {request.mode.value} migration {session_id}")
        return MigrationStartResponse(
            success=True,
            sessionId=session_id,
            message=f"{request.mode.value.capitalize()} migration started",
            status=SessionStatus.RUNNING.value,
        )

    @app.get("/migration-progress/{session_id}")
    async def migration_progress(session_id: str):
        session = store.get(session_id)
        if session is None:
            return not_found_snapshot(session_id)
        return session.to_dict()

    @app.get("/migrations")
    async def list_migrations():
        return {'sessions': [s.to_dict() for s in store.list()]}

    @app.post("/migrations/{session_id}/cancel")
    async def cancel_migration(session_id: str):
        if store.cancel(session_id):
            return {'success': True, 'sessionId': session_id, 'message': 'Cancellation requested'}
        session = store.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        raise HTTPException(status_code=409, detail=f"Session {session_id} already {session.status.value}")

    @app.websocket("/ws")
    async def progress_socket(websocket: WebSocket):
        await websocket.accept()
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        subscribed: Set[str] = set()

        def on_change(session):
            if session.session_id in subscribed:
                loop.call_soon_threadsafe(queue.put_nowait, {'type': 'progress', 'data': session.to_dict()})

        async def sender():
            while True:
                message = await queue.get()
                await websocket.send_json(message)

        unsubscribe = store.subscribe(on_change)
        send_task = asyncio.create_task(sender())
        try:
            while True:
                try:
                    message = await websocket.receive_json()
                except ValueError:
                    await queue.put({'type': 'error', 'message': 'Invalid JSON'})
                    continue

                msg_type = message.get('type') if isinstance(message, dict) else None
                session_id = message.get('sessionId') if isinstance(message, dict) else None

                if msg_type == 'subscribe' and session_id:
                    subscribed.add(session_id)
                    session = store.get(session_id)
                    data = session.to_dict() if session else not_found_snapshot(session_id)
                    await queue.put({'type': 'progress', 'data': data})
                elif msg_type == 'unsubscribe' and session_id:
                    subscribed.discard(session_id)
                else:
                    await queue.put({'type': 'error', 'message': 'Expected {"type": "subscribe", "sessionId": ...}'})
        except WebSocketDisconnect:
            logger.debug(f"WebSocket client disconnected ({len(subscribed)} subscriptions)")
        finally:
            unsubscribe()
            send_task.cancel()

    return app


# Create application instance
app = create_app()


def main():
    """Main entry point"""
    import argparse

    config = get_config()
    parser = argparse.ArgumentParser(description="dbshift Migration Server")
    parser.add_argument("--host", default=config.host, help="Host to bind to")
    parser.add_argument("--port", type=int, default=config.port, help="Port to bind to")
    parser.add_argument("--log-level", default=config.log_level.lower(),
                        choices=["debug", "info", "warning", "error"])
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info(f"Starting dbshift server on {args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
