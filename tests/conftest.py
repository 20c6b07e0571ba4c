"""Shared fixtures for dbsense tests."""

from __future__ import annotations

import os

import pytest

from dbsense.config import Config, reset_config


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch):
    """Keep DBSENSE_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("DBSENSE_"):
            monkeypatch.delenv(key)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config() -> Config:
    return Config(dsn="postgresql://test@localhost/test")
