"""
auth/store.py -- Identities and API keys the posture API authenticates against.

Users and their roles are provisioned by the host product; this store holds
the copy the API checks on every request, plus the long-lived API keys issued
to automation clients. Same Repository + Data Mapper split as tenants/store.py
and reports/store.py: UserStore owns the SQL, _row_to_* build dataclasses.

Revocation is a timestamp (revoked_at), never a delete, so a key's history
stays auditable after it stops working.

Driver failures surface as core.errors.StorageError. The auth dependencies
let them propagate, so a broken database answers 500 rather than 401.

Layer rule: no imports from api/, reports/, tenants/, or scanner/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import ApiKey, User
from core.config import now_iso
from core.errors import StorageError

logger = logging.getLogger("siteposture.auth")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'siteposture_auth.db'}"

_UPDATABLE_USER_FIELDS = frozenset({"role", "is_active"})

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("role", String(30), nullable=False, server_default="member"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

_api_keys = Table(
    "api_keys",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("key_hash", String(64), nullable=False, unique=True),
    Column("key_prefix", String(12), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("last_used", String(32)),
    Column("revoked_at", String(32)),
)


def _enable_wal(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


@contextmanager
def _guarded(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.warning("Auth store failure during %s: %s", operation, exc.__class__.__name__)
        raise StorageError(f"Storage failure during {operation}.", detail=exc.__class__.__name__) from exc


class UserStore:
    """Repository for User and ApiKey records.

    Usage:
        store = UserStore()
        uid = store.create_user(User(username="ops@example.com", role="operator"))
        store.update_user(uid, role="member")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        sqlite = db_url.startswith("sqlite")
        self.engine: Engine = create_engine(db_url, connect_args={"check_same_thread": False} if sqlite else {})
        if sqlite:
            event.listen(self.engine, "connect", _enable_wal)
        _metadata.create_all(self.engine)

    # -- users ---------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a user and return its ID. A taken username raises StorageError."""
        with _guarded("create_user"), self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    role=user.role,
                    is_active=int(user.is_active),
                    created_at=user.created_at or now_iso(),
                )
            )
        return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        return self._one_user(_users.c.id == user_id)

    def get_by_username(self, username: str) -> User | None:
        return self._one_user(_users.c.username == username)

    def update_user(self, user_id: int, **fields) -> bool:
        """Change role and/or is_active. Returns False if the user does not exist."""
        unknown = set(fields) - _UPDATABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user field(s): {', '.join(sorted(unknown))}")
        if "is_active" in fields:
            fields["is_active"] = int(bool(fields["is_active"]))
        with _guarded("update_user"), self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def _one_user(self, condition) -> User | None:
        with _guarded("user lookup"), self.engine.connect() as conn:
            row = conn.execute(select(_users).where(condition)).fetchone()
        return _row_to_user(row) if row is not None else None

    # -- api keys ------------------------------------------------------------

    def create_api_key(self, api_key: ApiKey) -> int:
        """Store a key's hash and display prefix. The raw key is never passed in."""
        with _guarded("create_api_key"), self.engine.begin() as conn:
            result = conn.execute(
                _api_keys.insert().values(
                    user_id=api_key.user_id,
                    name=api_key.name,
                    key_hash=api_key.key_hash,
                    key_prefix=api_key.key_prefix,
                    created_at=now_iso(),
                )
            )
        logger.info("API key %s issued to user %d", api_key.key_prefix, api_key.user_id)
        return result.inserted_primary_key[0]

    def get_api_key_by_hash(self, key_hash: str) -> ApiKey | None:
        """Return the unrevoked key with this HMAC, or None."""
        query = select(_api_keys).where(_api_keys.c.key_hash == key_hash, _api_keys.c.revoked_at.is_(None))
        with _guarded("api key lookup"), self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def update_api_key_last_used(self, key_id: int) -> None:
        with _guarded("api key touch"), self.engine.begin() as conn:
            conn.execute(_api_keys.update().where(_api_keys.c.id == key_id).values(last_used=now_iso()))

    def revoke_api_key(self, key_id: int, user_id: int) -> bool:
        """Revoke one of user_id's own keys. Returns False for someone else's or an already revoked key."""
        query = (
            _api_keys.update()
            .where(_api_keys.c.id == key_id, _api_keys.c.user_id == user_id, _api_keys.c.revoked_at.is_(None))
            .values(revoked_at=now_iso())
        )
        with _guarded("revoke_api_key"), self.engine.begin() as conn:
            result = conn.execute(query)
        if result.rowcount:
            logger.info("API key %d revoked by user %d", key_id, user_id)
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        role=row.role,
        created_at=row.created_at,
        is_active=bool(row.is_active),
    )


def _row_to_api_key(row) -> ApiKey:
    return ApiKey(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        key_hash=row.key_hash,
        key_prefix=row.key_prefix,
        created_at=row.created_at,
        last_used=row.last_used,
        is_active=row.revoked_at is None,
    )
