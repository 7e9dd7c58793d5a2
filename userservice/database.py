"""SQLAlchemy-backed persistence for the user directory."""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, Integer, String, create_engine, event, inspect, select, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .models import User

DEFAULT_CONNECT_TIMEOUT = 5


class Base(DeclarativeBase):
    """The base class for all declarative ORM models."""


class UserRecord(Base):
    """Declarative model of the `users` table."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f'UserRecord(id={self.id}, name="{self.name}", email="{self.email}")'


@event.listens_for(UserRecord, "before_update")
def _reject_created_at_changes(mapper, connection, target: UserRecord) -> None:
    history = inspect(target).attrs.created_at.history
    if history.has_changes():
        raise ValueError("created_at is immutable once a user has been stored")


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_url(env_value: Optional[str]) -> str:
    """Resolve the connection string for the application database."""

    if env_value and env_value.strip():
        return env_value.strip()
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return f"sqlite:///{(base_dir / 'users.sqlite3').resolve(strict=False)}"


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _engine_options(url: str, connect_timeout: int) -> Dict[str, Any]:
    parsed = make_url(url)
    backend = parsed.get_backend_name()
    if backend == "sqlite":
        if parsed.database and parsed.database != ":memory:":
            _ensure_directory(Path(parsed.database))
        return {"connect_args": {"check_same_thread": False}}
    options: Dict[str, Any] = {"pool_pre_ping": True}
    if backend == "postgresql":
        # libpq otherwise waits indefinitely on a stalled handshake.
        options["connect_args"] = {"connect_timeout": connect_timeout}
    return options


class Database:
    """Thin wrapper around a SQLAlchemy engine for persisting users."""

    def __init__(self, url: str, *, connect_timeout: int = DEFAULT_CONNECT_TIMEOUT) -> None:
        self._url = url
        self._engine = create_engine(url, **_engine_options(url, connect_timeout))
        self._sessions = sessionmaker(self._engine, expire_on_commit=False)

    @property
    def url(self) -> str:
        return self._url

    @property
    def engine(self) -> Engine:
        return self._engine

    def session(self) -> Session:
        return self._sessions()

    def ping(self) -> None:
        """Open a fresh connection and run a trivial query."""

        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def migrate(self) -> List[str]:
        """Apply pending schema migrations and return the applied versions."""

        from .migrations import apply_migrations

        return [migration.version for migration in apply_migrations(self._engine)]

    def dispose(self) -> None:
        self._engine.dispose()

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(self, name: str, email: str) -> User:
        """Insert a new user. Emails are stored exactly as supplied."""

        if not name or not name.strip():
            raise ValueError("Name must not be empty")
        if not email or not email.strip():
            raise ValueError("Email must not be empty")

        record = UserRecord(name=name, email=email, created_at=_current_timestamp())
        with self.session() as session:
            session.add(record)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ValueError("A user with that email already exists") from exc
            return self._record_to_user(record)

    def list_users(self) -> List[User]:
        with self.session() as session:
            records = session.scalars(select(UserRecord).order_by(UserRecord.id)).all()
            return [self._record_to_user(record) for record in records]

    def get_user(self, user_id: int) -> Optional[User]:
        with self.session() as session:
            record = session.get(UserRecord, user_id)
            if record is None:
                return None
            return self._record_to_user(record)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.session() as session:
            record = session.scalars(select(UserRecord).where(UserRecord.email == email)).first()
            if record is None:
                return None
            return self._record_to_user(record)

    def _record_to_user(self, record: UserRecord) -> User:
        return User(
            id=int(record.id),
            name=str(record.name),
            email=str(record.email),
            created_at=_as_utc(record.created_at),
        )


__all__ = ["Base", "Database", "UserRecord", "resolve_database_url"]
