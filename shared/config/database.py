from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from shared.config.settings import DATABASE_URL, DB_ECHO, DB_ISOLATION_LEVEL

# Every orchestrator call runs in exactly one transaction at this isolation level
engine = create_async_engine(
    DATABASE_URL,
    echo=DB_ECHO,
    isolation_level=DB_ISOLATION_LEVEL,
)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)

Base = declarative_base()
