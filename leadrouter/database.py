from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker
from .config import settings


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine; SQLite writers are serialized with BEGIN IMMEDIATE."""
    if not url.startswith("sqlite"):
        return create_async_engine(url, echo=echo, future=True)

    engine = create_async_engine(
        url, echo=echo, future=True, connect_args={"timeout": 30}
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_session_factory(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# Create Async Engine
engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
async_session_factory = build_session_factory(engine)


async def init_db(bind: AsyncEngine = engine):
    # Register tables on the metadata before create_all
    from leadrouter import models  # noqa: F401
    from leadrouter.repositories.rotation_repo import RotationRepository

    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    factory = build_session_factory(bind)
    async with factory() as session, session.begin():
        await RotationRepository(session).ensure_cursor()


def get_session_factory() -> sessionmaker:
    """Session factory used by services that open one transaction per unit of work."""
    return async_session_factory

