from unittest.mock import MagicMock

import pytest
from flask import Flask
from flask.testing import FlaskClient

from notifyq.intake import NotificationService
from notifyq.tracking import StatusTracker

from intake_gateway.app import create_app


@pytest.fixture()
def mock_service() -> MagicMock:
    service = MagicMock(spec=NotificationService)
    service.health_check.return_value = True
    return service


@pytest.fixture()
def mock_tracker() -> MagicMock:
    return MagicMock(spec=StatusTracker)


@pytest.fixture()
def app(mock_service: MagicMock, mock_tracker: MagicMock) -> Flask:
    app = create_app(mock_service, mock_tracker, max_user_log_limit=50)
    app.config["TESTING"] = True
    return app


@pytest.fixture()
def client(app: Flask) -> FlaskClient:
    return app.test_client()
