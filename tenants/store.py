"""
tenants/store.py -- SQLAlchemy-backed tenant directory (companies and agents).

Uses SQLAlchemy Core (not ORM) so the dataclasses in tenants/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. TenantStore is the repository;
_row_to_* functions are the mappers.

Security: all queries use bound parameters. No f-strings in SQL.

Driver failures surface as core.errors.StorageError, like ReportStore.

Usage:
    store = TenantStore()                               # SQLite default
    store = TenantStore("postgresql://user:pw@host/db") # PostgreSQL
    store.create_company(Company(company_id="c1", name="Acme", owner_user_id=1))
    store.create_agent(Agent(agent_id="a1", company_id="c1"))
    agent = store.resolve_agent("c1", "a1")
    store.close()
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.config import now_iso
from core.errors import StorageError
from tenants.models import Agent, Company

logger = logging.getLogger("siteposture.tenants")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'siteposture_tenants.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_companies = Table(
    "companies",
    metadata,
    Column("company_id", String(64), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("owner_user_id", Integer),
    Column("root_url", Text),
    Column("created_at", String(32), nullable=False),
)

_agents = Table(
    "agents",
    metadata,
    Column("agent_id", String(64), primary_key=True),
    Column("company_id", String(64), nullable=False, index=True),
    Column("name", String(255), nullable=False, server_default=""),
    Column("root_url", Text),
    Column("shared_with", Text),  # JSON array of user IDs
    Column("created_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.warning("Tenant store failure during %s: %s", operation, exc.__class__.__name__)
        raise StorageError(f"Storage failure during {operation}.", detail=exc.__class__.__name__) from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TenantStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Companies
    # ------------------------------------------------------------------

    def create_company(self, company: Company) -> str:
        """Insert a company. An existing company_id raises StorageError."""
        with _storage_errors("create_company"), self.engine.begin() as conn:
            conn.execute(
                _companies.insert().values(
                    company_id=company.company_id,
                    name=company.name,
                    owner_user_id=company.owner_user_id,
                    root_url=company.root_url,
                    created_at=company.created_at or now_iso(),
                )
            )
        return company.company_id

    def get_company(self, company_id: str) -> Optional[Company]:
        with _storage_errors("get_company"), self.engine.connect() as conn:
            row = conn.execute(_companies.select().where(_companies.c.company_id == company_id)).fetchone()
        return _row_to_company(row) if row is not None else None

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    def create_agent(self, agent: Agent) -> str:
        """Insert an agent. An existing agent_id raises StorageError."""
        with _storage_errors("create_agent"), self.engine.begin() as conn:
            conn.execute(
                _agents.insert().values(
                    agent_id=agent.agent_id,
                    company_id=agent.company_id,
                    name=agent.name,
                    root_url=agent.root_url,
                    shared_with=json.dumps(agent.shared_with),
                    created_at=agent.created_at or now_iso(),
                )
            )
        return agent.agent_id

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        with _storage_errors("get_agent"), self.engine.connect() as conn:
            row = conn.execute(_agents.select().where(_agents.c.agent_id == agent_id)).fetchone()
        return _row_to_agent(row) if row is not None else None

    def get_agent_for_company(self, company_id: str) -> Optional[Agent]:
        """Return the company's first agent (oldest first).

        The in-page collector only knows its companyId; this picks the agent
        its scans are credited to when the submission names none.
        """
        with _storage_errors("get_agent_for_company"), self.engine.connect() as conn:
            row = conn.execute(
                _agents.select()
                .where(_agents.c.company_id == company_id)
                .order_by(_agents.c.created_at, _agents.c.agent_id)
                .limit(1)
            ).fetchone()
        return _row_to_agent(row) if row is not None else None

    def resolve_agent(self, company_id: str, agent_id: str) -> Optional[Agent]:
        """Return the agent only if it exists AND belongs to company_id."""
        agent = self.get_agent(agent_id)
        if agent is None or agent.company_id != company_id:
            return None
        return agent

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_company(row) -> Company:
    return Company(
        company_id=row.company_id,
        name=row.name,
        owner_user_id=row.owner_user_id,
        root_url=row.root_url,
        created_at=row.created_at,
    )


def _row_to_agent(row) -> Agent:
    shared: list[int] = json.loads(row.shared_with) if row.shared_with else []
    return Agent(
        agent_id=row.agent_id,
        company_id=row.company_id,
        name=row.name,
        root_url=row.root_url,
        shared_with=shared,
        created_at=row.created_at,
    )
