"""Shared test fixtures and configuration."""

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio

# Settings read the environment; keep tests independent of the host's .env
os.environ.setdefault("OPENAI_API_KEY", "test-key")

from app.ai.duplex_base import SessionConfig
from app.config import AiSettings, Config, ServerSettings, SystemSettings
from app.core.diagnostics import DiagnosticLog
from tests.fakes import FakeAiLeg, FakeChannel, FakeTelephonyLeg


@pytest.fixture
def diagnostics() -> DiagnosticLog:
    """Fresh diagnostic log for each test."""
    return DiagnosticLog(capacity=100)


@pytest.fixture
def session_config() -> SessionConfig:
    """Session parameters used by AI leg tests."""
    return SessionConfig(instructions="You are a test agent.", voice="shimmer", temperature=0.8)


@pytest.fixture
def config() -> Config:
    """Configuration built without reading any dotenv file."""
    return Config(
        ai=AiSettings(_env_file=None, openai_api_key="test-key"),
        server=ServerSettings(_env_file=None),
        system=SystemSettings(_env_file=None, log_file_dir=None),
    )


@pytest_asyncio.fixture
async def telephony_channel() -> AsyncGenerator[FakeChannel, None]:
    channel = FakeChannel()
    yield channel
    await channel.close()


@pytest_asyncio.fixture
async def ai_channel() -> AsyncGenerator[FakeChannel, None]:
    channel = FakeChannel()
    yield channel
    await channel.close()


@pytest.fixture
def telephony_leg() -> FakeTelephonyLeg:
    return FakeTelephonyLeg()


@pytest.fixture
def ai_leg() -> FakeAiLeg:
    return FakeAiLeg()
