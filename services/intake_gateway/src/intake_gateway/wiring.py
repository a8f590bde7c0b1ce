"""Builds the gateway's collaborators from environment configuration."""

from flask import Flask

from notifyq.config import KafkaConfig, PostgresConfig
from notifyq.db.base import create_db_engine, create_session_factory
from notifyq.events import KafkaStatusPublisher
from notifyq.intake import NotificationService
from notifyq.tracking import StatusTracker

from intake_gateway.app import create_app
from intake_gateway.config import GatewayConfig


def build_app(config: GatewayConfig | None = None) -> Flask:
    config = config or GatewayConfig()
    engine = create_db_engine(PostgresConfig().dsn, pool_pre_ping=True)
    session_factory = create_session_factory(engine)

    kafka_config = KafkaConfig()
    publisher = KafkaStatusPublisher(kafka_config) if kafka_config.enabled else None

    return create_app(
        NotificationService(session_factory, publisher),
        StatusTracker(session_factory, publisher),
        publisher,
        log_level=config.log_level,
        max_user_log_limit=config.max_user_log_limit,
    )
