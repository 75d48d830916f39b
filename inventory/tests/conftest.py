from __future__ import annotations

import logging
import os

import pytest

from cluster_inventory.logging import setup_logging


@pytest.fixture(autouse=True)
def aws_test_environment(monkeypatch) -> None:
    # Never reach a real account from tests.
    monkeypatch.setenv("AWS_DEFAULT_REGION", "eu-west-1")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    for name in list(os.environ):
        if name.startswith("CLUSTER_INV_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    configured = getattr(setup_logging, "_configured", False)
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            if isinstance(handler, logging.FileHandler):
                handler.close()
    root.handlers = handlers
    root.setLevel(level)
    setattr(setup_logging, "_configured", configured)
