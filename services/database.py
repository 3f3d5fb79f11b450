"""Database connection management for async Postgres operations.

This module provides async connection management using SQLAlchemy's async engine
with SQLModel. The connection URL and the service credential are read from
separate environment variables so the password never has to live in the URL.
"""
import os
import ssl
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse, quote

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

# Global engine instance (initialized lazily)
_engine: AsyncEngine | None = None
_async_session_maker: sessionmaker | None = None

# Query parameters asyncpg does not understand
INCOMPATIBLE_PARAMS = ("sslmode", "channel_binding", "options")


def get_database_url() -> tuple[str, dict]:
    """Build the asyncpg URL from DATABASE_URL and DATABASE_PASSWORD.
    
    Returns:
        Tuple of (database URL with asyncpg driver, connect_args dict).
        
    Raises:
        ValueError: If DATABASE_URL or DATABASE_PASSWORD is not set.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable is not set")
    password = os.getenv("DATABASE_PASSWORD")
    if not password:
        raise ValueError("DATABASE_PASSWORD environment variable is not set")
    
    parsed = urlparse(database_url)
    query_params = parse_qs(parsed.query)
    
    connect_args = {}
    sslmode = query_params.get("sslmode", [""])[0]
    ssl_required = sslmode in ("require", "verify-ca", "verify-full")
    
    filtered_params = {k: v for k, v in query_params.items() if k not in INCOMPATIBLE_PARAMS}
    new_query = urlencode(filtered_params, doseq=True) if filtered_params else ''
    
    # Inject the service credential, replacing any password already in the URL
    username = parsed.username or "postgres"
    host = parsed.hostname or "localhost"
    port = f":{parsed.port}" if parsed.port else ""
    netloc = f"{quote(username, safe='')}:{quote(password, safe='')}@{host}{port}"
    
    clean_url = urlunparse((
        "postgresql+asyncpg",
        netloc,
        parsed.path,
        parsed.params,
        new_query,
        parsed.fragment
    ))
    
    if ssl_required:
        ssl_context = ssl.create_default_context()
        if sslmode == "require":
            # "require" encrypts without verifying the server certificate
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
        connect_args['ssl'] = ssl_context
    
    return clean_url, connect_args


def get_engine() -> AsyncEngine:
    """Get or create the async database engine.
    
    Returns:
        The AsyncEngine instance.
    """
    global _engine
    
    if _engine is None:
        database_url, connect_args = get_database_url()
        
        _engine = create_async_engine(
            database_url,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            pool_recycle=300,
            echo=False,
            connect_args=connect_args,
        )
        
        logger.info("Database engine created successfully")
    
    return _engine


def get_session_maker() -> sessionmaker:
    """Get or create the async session maker."""
    global _async_session_maker
    
    if _async_session_maker is None:
        _async_session_maker = sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False
        )
    
    return _async_session_maker


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Async context manager for database sessions.
    
    Usage:
        async with get_async_session() as session:
            result = await session.execute(query)
            
    Yields:
        An AsyncSession instance.
    """
    session_maker = get_session_maker()
    async with session_maker() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}", exc_info=True)
            raise
        finally:
            await session.close()


async def close_engine() -> None:
    """Close the database engine and cleanup connections.
    
    Called from the application lifespan on shutdown.
    """
    global _engine, _async_session_maker
    
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_maker = None
        logger.info("Database engine closed")
