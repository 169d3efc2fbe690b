"""
Create the verification backend's tables and optionally grant a role to an existing profile.

    python init_db.py
    python init_db.py --grant-role admin --user-id <uuid> --email admin@cheatplace.studio
"""
import argparse
import asyncio
import logging
import os
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from services.db import engine, Base
from models import verification_code, profile, ban  # force-load all models
from models.profile import AppRole, Profile
from dao.profile_dao import ProfileDAO

logger = logging.getLogger(__name__)

async def init_models(target: AsyncEngine = engine, drop_existing: bool = False) -> list:
    """Create every table known to the metadata. Returns the table names."""
    logger.info(f"Initializing database at {target.url.render_as_string(hide_password=True)}")
    logger.info(f"Environment: {os.getenv('ENVIRONMENT', 'development')}")

    async with target.begin() as conn:
        if drop_existing:
            await conn.run_sync(Base.metadata.drop_all)
            logger.warning("Dropped existing tables")
        await conn.run_sync(Base.metadata.create_all)

    table_names = sorted(Base.metadata.tables.keys())
    logger.info(f"Tables ready: {table_names}")
    return table_names

async def grant_role(target: AsyncEngine, user_id: str, role: str, email: Optional[str] = None) -> bool:
    """Give ``role`` to ``user_id``, creating the profile row if needed. False if already granted."""
    role = AppRole(role).value
    session_factory = async_sessionmaker(target, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        dao = ProfileDAO(session)
        if await dao.get_by_id(user_id) is None:
            session.add(Profile(id=user_id, email=email))
            await session.commit()
        added = await dao.add_role(user_id, role)

    if added:
        logger.info(f"Granted {role} to {user_id}")
    else:
        logger.info(f"{user_id} already has {role}")
    return added

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Initialize the verification database")
    parser.add_argument("--drop", action="store_true", help="drop existing tables first")
    parser.add_argument("--grant-role", choices=[r.value for r in AppRole])
    parser.add_argument("--user-id")
    parser.add_argument("--email")
    args = parser.parse_args(argv)
    if args.grant_role and not args.user_id:
        parser.error("--grant-role requires --user-id")
    return args

async def main(argv=None):
    args = parse_args(argv)
    await init_models(engine, drop_existing=args.drop)
    if args.grant_role:
        await grant_role(engine, args.user_id, args.grant_role, args.email)
    await engine.dispose()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(main())
