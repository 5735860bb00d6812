from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from flexidual.core.config import get_settings

settings = get_settings()


def _engine_options(database_url: str) -> dict:
    options: dict = {"echo": settings.database_echo, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    else:
        # Conflict checks read then write inside one transaction.
        options["isolation_level"] = "SERIALIZABLE"
    return options


engine = create_engine(settings.database_url, **_engine_options(settings.database_url))
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
