import asyncio

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.db import create_tables
from app.models.audit_log import clear_audit_log
from app.upload.progress_store import ProgressStore


@pytest.fixture
def store(tmp_path):
    # NullPool: every asyncio.run() in a test gets fresh connections on its own loop
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/progress.db", poolclass=NullPool)
    asyncio.run(create_tables(engine))
    yield ProgressStore(async_sessionmaker(engine, expire_on_commit=False))


@pytest.fixture(autouse=True)
def _fresh_audit_log():
    clear_audit_log()
    yield
