from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
import os

# Database configuration with defaults
POSTGRES_USER = os.getenv('POSTGRES_USER', 'cheatplace')
POSTGRES_PASSWORD = os.getenv('POSTGRES_PASSWORD', 'secretpassword')
DB_HOST = os.getenv('DB_HOST', 'localhost')
DB_PORT = os.getenv('DB_PORT', '5432')
POSTGRES_DB = os.getenv('POSTGRES_DB', 'cheatplace')
DB_TIMEOUT_SECONDS = float(os.getenv('DB_TIMEOUT_SECONDS', '10'))

DATABASE_URL = os.getenv(
    'DATABASE_URL',
    f"postgresql+asyncpg://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{DB_HOST}:{DB_PORT}/{POSTGRES_DB}"
)

def _connect_args(url: str) -> dict:
    # Bound every store round trip so a hung connection surfaces as a storage error
    if url.startswith("postgresql+asyncpg"):
        return {"timeout": DB_TIMEOUT_SECONDS, "command_timeout": DB_TIMEOUT_SECONDS}
    if url.startswith("sqlite"):
        return {"timeout": DB_TIMEOUT_SECONDS}
    return {}

engine = create_async_engine(DATABASE_URL, echo=False, future=True, connect_args=_connect_args(DATABASE_URL))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

Base = declarative_base()

async def get_db():
    async with SessionLocal() as session:
        yield session
