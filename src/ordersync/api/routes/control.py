"""Control routes used by the host application (login, logout, config change)."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from ordersync.models.sync import SyncLog
from ordersync.sync.engine import SyncEngine

router = APIRouter()


class StartRequest(BaseModel):
    server_url: str
    token: str


class TokenRequest(BaseModel):
    token: Optional[str] = None


class ServerUrlRequest(BaseModel):
    server_url: Optional[str] = None


class StateResponse(BaseModel):
    state: str


class LastCycle(BaseModel):
    status: str
    started_at: datetime
    finished_at: Optional[datetime]
    rows_read: int
    orders_delivered: int
    orders_queued: int
    error_message: Optional[str]


class StatusResponse(BaseModel):
    state: str
    connected: bool
    server_url: Optional[str]
    last_poll: Optional[str]
    queue_size: int
    last_cycle: Optional[LastCycle] = None


def get_sync_engine(request: Request) -> SyncEngine:
    """Dependency returning the engine owned by the app."""
    return request.app.state.sync_engine


def _last_cycle(engine: SyncEngine) -> Optional[LastCycle]:
    audit_engine = engine.audit_engine
    if audit_engine is None:
        return None
    try:
        with Session(audit_engine) as s:
            log = s.exec(select(SyncLog).order_by(SyncLog.started_at.desc())).first()
    except SQLAlchemyError:
        return None
    if log is None:
        return None
    return LastCycle(
        status=log.status,
        started_at=log.started_at,
        finished_at=log.finished_at,
        rows_read=log.rows_read,
        orders_delivered=log.orders_delivered,
        orders_queued=log.orders_queued,
        error_message=log.error_message,
    )


@router.post("/start", response_model=StateResponse)
async def start_sync(
    request: StartRequest, engine: SyncEngine = Depends(get_sync_engine)
):
    """Start syncing after the host logged in (or started with a saved token)."""
    state = await engine.start(request.server_url, request.token)
    return StateResponse(state=state.value)


@router.post("/stop", response_model=StateResponse)
async def stop_sync(engine: SyncEngine = Depends(get_sync_engine)):
    # async so the scheduler is shut down on the event loop thread
    return StateResponse(state=engine.stop().value)


@router.put("/token", response_model=StateResponse)
async def update_token(
    request: TokenRequest, engine: SyncEngine = Depends(get_sync_engine)
):
    """New token from the host; a non-empty token flushes the queue."""
    await engine.update_token(request.token)
    return StateResponse(state=engine.state.value)


@router.put("/server-url", response_model=StateResponse)
def update_server_url(
    request: ServerUrlRequest, engine: SyncEngine = Depends(get_sync_engine)
):
    engine.update_server_url(request.server_url)
    return StateResponse(state=engine.state.value)


@router.post("/trigger")
async def trigger_poll(
    background_tasks: BackgroundTasks,
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Run one poll cycle now. Returns immediately; the cycle runs in background."""
    if not engine.reader.is_available():
        raise HTTPException(status_code=409, detail="Sync disabled: legacy store not found")
    background_tasks.add_task(engine.poll_once)
    return {"message": "Poll started"}


@router.get("/status", response_model=StatusResponse)
def sync_status(engine: SyncEngine = Depends(get_sync_engine)):
    return StatusResponse(**engine.status(), last_cycle=_last_cycle(engine))


@router.get("/queue")
def pending_queue(
    engine: SyncEngine = Depends(get_sync_engine),
) -> List[Dict[str, Any]]:
    """Orders waiting for delivery, as persisted."""
    return [order.to_queue_record() for order in engine.queue.entries()]
