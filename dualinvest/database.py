"""SQLModel journal engine."""

import logging
from pathlib import Path

from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str) -> Engine:
    connect_args = {}
    kwargs = {}
    # SQLite needs check_same_thread=False; in-memory databases share one connection
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if make_url(database_url).database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, echo=False, connect_args=connect_args, **kwargs)


def create_db_and_tables(db_engine: Engine):
    """Create all journal tables. Called on startup."""
    import dualinvest.models  # noqa: F401  registers tables on the metadata

    url = db_engine.url
    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    SQLModel.metadata.create_all(db_engine)
    logger.info(f"Journal tables ready at {url.render_as_string(hide_password=True)}")
