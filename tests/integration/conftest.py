"""Integration test fixtures using testcontainers.

Session-scoped containers for PostgreSQL and Redis; the schema comes from
the Alembic migrations. Function-scoped DB cleanup and a live gateway.
"""

import os
import threading
from collections.abc import Generator
from pathlib import Path
from urllib.parse import urlparse

import httpx
import pytest
from redis import Redis
from sqlalchemy import Engine, text
from sqlalchemy.orm import Session, sessionmaker
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer
from werkzeug.serving import make_server

from notifyq.db.base import create_db_engine, create_session_factory
from notifyq.intake import NotificationService
from notifyq.tracking import StatusTracker

pytestmark = pytest.mark.integration

# ---------------------------------------------------------------------------
# Containers (session-scoped)
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    with PostgresContainer("postgres:16-alpine", driver="psycopg2") as pg:
        yield pg


@pytest.fixture(scope="session")
def redis_container() -> Generator[RedisContainer, None, None]:
    with RedisContainer("redis:7-alpine") as redis_c:
        yield redis_c


@pytest.fixture(scope="session")
def pg_dsn(postgres_container: PostgresContainer) -> str:
    return postgres_container.get_connection_url()


@pytest.fixture(scope="session")
def redis_host_port(redis_container: RedisContainer) -> tuple[str, int]:
    host = redis_container.get_container_host_ip()
    port = int(redis_container.get_exposed_port(6379))
    return host, port


# ---------------------------------------------------------------------------
# Environment variables (session-scoped, autouse)
# Pydantic-settings configs read these automatically.
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session", autouse=True)
def _set_env_vars(
    pg_dsn: str, redis_host_port: tuple[str, int]
) -> Generator[None, None, None]:
    parsed = urlparse(pg_dsn)
    overrides = {
        "POSTGRES_HOST": parsed.hostname or "localhost",
        "POSTGRES_PORT": str(parsed.port or 5432),
        "POSTGRES_DATABASE": (parsed.path or "/test").lstrip("/"),
        "POSTGRES_USER": parsed.username or "test",
        "POSTGRES_PASSWORD": parsed.password or "test",
        "REDIS_HOST": redis_host_port[0],
        "REDIS_PORT": str(redis_host_port[1]),
        "KAFKA_ENABLED": "false",
    }

    saved: dict[str, str | None] = {}
    for key, value in overrides.items():
        saved[key] = os.environ.get(key)
        os.environ[key] = value

    yield

    for key, old in saved.items():
        if old is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = old


# ---------------------------------------------------------------------------
# Database (session-scoped)
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def db_engine(pg_dsn: str, _set_env_vars: None) -> Generator[Engine, None, None]:
    """Create engine and run Alembic migrations against testcontainer PG."""
    from alembic import command
    from alembic.config import Config as AlembicConfig

    engine = create_db_engine(pg_dsn, pool_pre_ping=True, pool_size=10)

    shared_dir = Path(__file__).resolve().parents[2] / "shared"
    alembic_cfg = AlembicConfig(str(shared_dir / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(shared_dir / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", pg_dsn)
    command.upgrade(alembic_cfg, "head")

    yield engine
    engine.dispose()


@pytest.fixture(scope="session")
def session_factory(db_engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(db_engine)


@pytest.fixture(autouse=True)
def _cleanup_db(session_factory: sessionmaker[Session]) -> Generator[None, None, None]:
    """Truncate queue tables after each test."""
    yield
    with session_factory() as session:
        session.execute(
            text(
                "TRUNCATE notification_queue, notification_logs, "
                "notification_templates"
            )
        )
        session.commit()


@pytest.fixture()
def redis_client(redis_host_port: tuple[str, int]) -> Generator[Redis, None, None]:
    client = Redis(host=redis_host_port[0], port=redis_host_port[1])
    yield client
    client.flushdb()
    client.close()


# ---------------------------------------------------------------------------
# Intake gateway (function-scoped)
# ---------------------------------------------------------------------------


@pytest.fixture()
def gateway_url(session_factory: sessionmaker[Session]) -> Generator[str, None, None]:
    """Start the Flask intake gateway in a background thread, yield base URL."""
    from intake_gateway.app import create_app

    app = create_app(
        NotificationService(session_factory), StatusTracker(session_factory)
    )
    app.config["TESTING"] = True

    server = make_server("127.0.0.1", 0, app)
    port = server.server_address[1]

    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    yield f"http://127.0.0.1:{port}"

    server.shutdown()


@pytest.fixture()
def http_client(gateway_url: str) -> Generator[httpx.Client, None, None]:
    with httpx.Client(base_url=gateway_url, timeout=10.0) as client:
        yield client
