# quizsync/dependencies.py
from typing import Optional

from fastapi import Depends, HTTPException, status

from quizsync.config import get_settings
from quizsync.database.database import get_database
from quizsync.database.store import SessionStore
from quizsync.realtime.bus import RealtimeBus
from quizsync.services.errors import StoreUnavailable
from quizsync.services.quiz_service import QuizService

# One bus per process; every controller opens its own client on it
_bus_instance: Optional[RealtimeBus] = None


def get_bus() -> RealtimeBus:
    global _bus_instance
    if _bus_instance is None:
        settings = get_settings()
        _bus_instance = RealtimeBus(
            redis_url=settings.redis_url,
            retry_attempts=settings.bus_retry_attempts,
            retry_delay=settings.bus_retry_delay_seconds,
        )
    return _bus_instance


def get_store(bus: RealtimeBus = Depends(get_bus)) -> SessionStore:
    try:
        db = get_database()
    except StoreUnavailable:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database connection not available.",
        )
    return SessionStore(db, bus=bus)


def get_quiz_service(store: SessionStore = Depends(get_store)) -> QuizService:
    return QuizService(store)
