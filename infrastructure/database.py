"""
异步引擎与会话工厂；事务边界由 SQLAlchemyUnitOfWork 控制
"""
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.config import settings
from infrastructure.models import Base


_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def build_async_url(database_url: str) -> str:
    """postgresql://... 补成 postgresql+asyncpg://...，已带驱动的原样返回"""
    url = make_url(database_url)
    if "+" in url.drivername:
        return database_url
    try:
        driver = _ASYNC_DRIVERS[url.drivername]
    except KeyError:
        raise ValueError(f"Unsupported database driver: {url.drivername}") from None
    return url.set(drivername=driver).render_as_string(hide_password=False)


def _engine_options(database_url: str) -> dict:
    # 内存 SQLite 每个连接都是一个新库
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_async_engine(
    build_async_url(settings.database.url),
    echo=settings.database.echo,
    **_engine_options(settings.database.url),
)

AsyncSessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)


async def create_tables() -> None:
    """开发环境启动时建表；其他环境走 alembic upgrade head"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
