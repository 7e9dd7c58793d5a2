"""HTTP API exposing the user directory."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, load_settings
from .database import Database, resolve_database_url
from .models import User

logger = logging.getLogger("userservice.api")


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    created_at: datetime


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        created_at=user.created_at,
    )


def create_app(
    *,
    database: Optional[Database] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create the FastAPI application serving ``/users``."""

    if database is None:
        settings = settings or load_settings()
        database = Database(resolve_database_url(settings.database_url))

    app = FastAPI(title="User Directory API")
    app.state.database = database

    def get_db() -> Database:
        return database

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/users", response_model=List[UserResponse])
    def list_users(db: Database = Depends(get_db)) -> List[UserResponse]:
        return [user_to_response(user) for user in db.list_users()]

    @app.exception_handler(SQLAlchemyError)
    async def handle_database_error(_: object, exc: SQLAlchemyError):
        logger.error("Database error while handling request", exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Database error"},
        )

    return app


__all__ = ["UserResponse", "create_app", "user_to_response"]
