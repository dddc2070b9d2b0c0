import logging
from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from clinical_dwh.core.config import database_url
from clinical_dwh.models.tables import Base, EtlRunLog

log = logging.getLogger(__name__)

def _enable_sqlite_fks(dbapi_conn, _record):
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()

def get_engine(url: str | None = None) -> Engine:
    try:
        engine = create_engine(url or database_url(), echo=False, future=True)
    except SQLAlchemyError as e:
        log.error("Failed to create engine: %s", e)
        raise
    if engine.dialect.name == "sqlite":
        # SQLite only enforces declared foreign keys when asked to, per connection
        event.listen(engine, "connect", _enable_sqlite_fks)
    return engine

def create_tables(engine: Engine | None = None) -> Engine:
    """Create the run log table if it is missing (idempotent).

    Warehouse and staging tables are dropped and recreated by every run, see
    clinical_dwh.load.
    """
    engine = engine or get_engine()
    insp = inspect(engine)
    if insp.has_table(EtlRunLog.__tablename__):
        log.info("Run log table exists. Skipping creation.")
        return engine

    log.info("Creating table: %s", EtlRunLog.__tablename__)
    Base.metadata.create_all(engine, tables=[EtlRunLog.__table__])
    log.info("Tables created.")
    return engine

def table_names(engine: Engine) -> list[str]:
    return sorted(inspect(engine).get_table_names())
