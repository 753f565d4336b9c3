"""Pytest configuration and shared fixtures."""

import logging

import pytest


logger = logging.getLogger(__name__)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    """Keep tests away from any real .env database path."""
    monkeypatch.setattr("src.core.config.settings.sqlite_db_path", str(tmp_path / "tasktree.db"))
