"""
数据库连接管理

- 懒创建 Engine，支持测试中替换 DATABASE_URL
- get_db 作为 FastAPI 依赖，每个请求一个会话
- create_session 供 CLI / 启动流程使用
"""

from typing import Generator, Optional

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from modhub.config import config
from modhub.core.logger import logger

_engine: Optional[Engine] = None

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)


def get_engine() -> Engine:
    """获取（必要时创建）全局 Engine"""
    global _engine
    if _engine is None:
        url = config.database_url
        kwargs = {"pool_pre_ping": True}
        if url.startswith("sqlite"):
            # SQLite 连接会在 FastAPI 线程池中跨线程使用
            kwargs["connect_args"] = {"check_same_thread": False}
        _engine = create_engine(url, **kwargs)
        SessionLocal.configure(bind=_engine)
    return _engine


def create_session() -> Session:
    """创建独立的数据库会话，调用方负责关闭"""
    get_engine()
    return SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """FastAPI 依赖：请求级数据库会话"""
    db = create_session()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """创建缺失的表（生产环境应使用 Alembic 迁移）"""
    from modhub.models.database import Base

    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("数据库表初始化完成")


def is_table_present(db: Session, table_name: str) -> bool:
    """
    检查表是否存在

    数据库不可达时返回 False，而不是抛出异常
    """
    try:
        return inspect(db.get_bind()).has_table(table_name)
    except SQLAlchemyError as e:
        logger.warning(f"检查数据表 {table_name} 失败: {e}")
        return False
