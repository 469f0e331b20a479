"""
测试公共夹具

每个测试使用独立的 SQLite 内存库（StaticPool 让同一连接跨线程共享，
FastAPI TestClient 在工作线程中执行同步依赖）。
"""

from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from modhub.core.cache_service import CacheService
from modhub.core.modules import ModuleRegistry
from modhub.models.database import Base


@pytest.fixture()
def engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def cache() -> CacheService:
    return CacheService(prefix="test_modules")


@pytest.fixture()
def registry(cache: CacheService) -> ModuleRegistry:
    return ModuleRegistry(
        cache=cache,
        cache_ttl=60,
        allow_install=True,
        allow_uninstall=True,
        auto_sync=True,
    )
