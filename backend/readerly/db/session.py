# readerly/db/session.py
from __future__ import annotations

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from readerly.core.config import settings

# Base para modelos SQLAlchemy (readerly.db.models la importa desde aquí)
Base = declarative_base()

DATABASE_URL = settings.database_url

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    # Los handlers de FastAPI corren en el threadpool y el tick de APScheduler
    # en su propio thread; ambos abren sesiones sobre este engine
    connect_args = {"check_same_thread": False}

engine = create_engine(
    DATABASE_URL,
    future=True,
    connect_args=connect_args,
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)


def init_db() -> None:
    # Importa los modelos para registrarlos en Base.metadata
    from readerly.db import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency para FastAPI.
    Uso típico:
        def endpoint(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
