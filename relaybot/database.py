from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from relaybot.config import settings
from relaybot.logging_config import get_logger

logger = get_logger("database")


class StoreInitError(Exception):
    """Raised when the schema cannot be created or migrated."""


def _engine_kwargs(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def _add_missing_columns(bind) -> list[str]:
    """Add model columns that an older table does not have yet. Existing rows are kept."""
    added = []
    inspector = inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in Base.metadata.sorted_tables:
        if table.name not in existing_tables:
            continue
        present = {column["name"] for column in inspector.get_columns(table.name)}
        for column in table.columns:
            if column.name in present or column.primary_key:
                continue
            column_type = column.type.compile(dialect=bind.dialect)
            ddl = f"ALTER TABLE {table.name} ADD COLUMN {column.name} {column_type}"
            default = column.default.arg if column.default is not None and column.default.is_scalar else None
            if isinstance(default, bool):
                ddl += f" DEFAULT {int(default)}"
            elif isinstance(default, (int, float)):
                ddl += f" DEFAULT {default}"
            with bind.begin() as conn:
                conn.execute(text(ddl))
            added.append(f"{table.name}.{column.name}")

    return added


def init_db(bind=None) -> None:
    """Create tables and apply additive migrations. Raises StoreInitError on failure."""
    import relaybot.models  # noqa: F401

    bind = bind or engine
    try:
        Base.metadata.create_all(bind=bind)
        added = _add_missing_columns(bind)
    except SQLAlchemyError as e:
        logger.error(f"Store initialization failed: {e}", exc_info=True)
        raise StoreInitError(str(e)) from e

    if added:
        logger.info("Schema migrated", extra={"context": {"added_columns": added}})
