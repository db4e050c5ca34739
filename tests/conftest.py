"""Shared pytest fixtures and configuration."""

from typing import Any

import pytest

from agility_git_helper import agility_api, cli
from agility_git_helper import config as ag_config
from agility_git_helper import logging as ag_logging


# Register custom markers
def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: fast tests with no external dependencies")
    config.addinivalue_line("markers", "integration: tests that run real git commands")


# Shared fixtures


@pytest.fixture(autouse=True)
def config_file(tmp_path, monkeypatch):
    """Point every config/cert/log path into tmp_path."""
    config_dir = tmp_path / "agility-config"
    config_path = config_dir / "config"
    cert_path = config_dir / "cacerts.pem"
    monkeypatch.setattr(ag_config, "CONFIG_FILE", config_path)
    for module in (ag_config, agility_api, cli):
        monkeypatch.setattr(module, "CERT_FILE", cert_path)
    monkeypatch.setattr(ag_logging, "LOG_FILE", tmp_path / "logs" / "ag.log")
    monkeypatch.delenv("AG_LOG_LEVEL", raising=False)
    return config_path


@pytest.fixture
def configured() -> None:
    """A complete connection configuration."""
    ag_config.set_config("server", "https://v1.example.com/Acme")
    ag_config.set_config("token", "secret-token")


def make_asset(oid: str, **attrs: Any) -> dict[str, Any]:
    """Build a raw asset record the way rest-1.v1 returns it."""
    return {
        "_oid": oid,
        "id": oid,
        "Attributes": {
            name: {"_type": "Attribute", "name": name, "value": value}
            for name, value in attrs.items()
        },
    }


def make_workitem(oid: str, number: str, name: str, status: str = "", **extra: Any) -> dict[str, Any]:
    attrs = {"Name": name, "Number": number, "Status.Name": status or None}
    attrs["Scope.Name"] = extra.pop("project", "Web")
    attrs["AssetType"] = extra.pop("asset_type", "Story")
    attrs.update(extra)
    return make_asset(oid, **attrs)
