"""Shared test fixtures for the outreach agent test suite."""

from __future__ import annotations

import os
from unittest.mock import AsyncMock, MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("METRICS_ENABLED", "false")
    os.environ.setdefault("VALIDATE_TWILIO_SIGNATURE", "false")
    os.environ.setdefault("PUBLIC_BASE_URL", "")


@pytest.fixture
def corpus_dir(tmp_path):
    """A corpus folder with two small documents."""
    (tmp_path / "faq.txt").write_text(
        "We offer AI consulting and automation services for manufacturing clients.",
        encoding="utf-8",
    )
    (tmp_path / "pricing.txt").write_text(
        "Our pricing starts with a free discovery call. Projects are billed monthly.",
        encoding="utf-8",
    )
    return tmp_path


@pytest.fixture
def mock_llm():
    """Factory fixture: a chat model whose ``ainvoke`` returns fixed text."""
    from langchain_core.messages import AIMessage

    def _make(content: str = "Happy to help.", *, error: Exception | None = None):
        llm = MagicMock()
        if error is not None:
            llm.ainvoke = AsyncMock(side_effect=error)
        else:
            llm.ainvoke = AsyncMock(return_value=AIMessage(content=content))
        return llm

    return _make
