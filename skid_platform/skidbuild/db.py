import os
from dataclasses import dataclass

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


@dataclass
class DBConfig:
    url: str
    echo: bool = False


def load_db_config() -> DBConfig:
    url = os.environ.get("DATABASE_URL", "sqlite:///./skid_build.sqlite")
    echo = os.environ.get("DATABASE_ECHO", "").lower() in ("1", "true", "yes")
    return DBConfig(url=url, echo=echo)


def _is_sqlite_memory(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") == "sqlite:")


def build_engine(config: DBConfig):
    kwargs = {"echo": config.echo}
    if config.url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    # An in-memory database only lives as long as its connection, and the
    # store opens one transaction per operation.
    if _is_sqlite_memory(config.url):
        kwargs["poolclass"] = StaticPool
    return create_engine(config.url, **kwargs)


def build_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
