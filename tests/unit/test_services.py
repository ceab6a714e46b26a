"""Tests for :func:`calsync.services.build_services`."""

from __future__ import annotations

from unittest.mock import create_autospec

from sqlalchemy import inspect

from calsync.calendar.gateway import GoogleCalendarGateway
from calsync.config import Settings
from calsync.services import build_services
from calsync.store import init_db


class TestBuildServices:
    """The wiring shares one engine and one gateway."""

    def test_components_share_gateway(self) -> None:
        gateway = create_autospec(GoogleCalendarGateway, instance=True)
        services = build_services(Settings(database_url="sqlite:///:memory:"), gateway=gateway)

        assert services.sync_engine._gateway is gateway
        assert services.channels._gateway is gateway
        assert services.channels._engine is services.sync_engine

    def test_engine_from_settings(self) -> None:
        services = build_services(Settings(database_url="sqlite:///:memory:"))
        init_db(services.db_engine)

        tables = set(inspect(services.db_engine).get_table_names())
        assert "calendar_events_cache" in tables
        assert services.events.list_cached_events("owner@example.com") == []
