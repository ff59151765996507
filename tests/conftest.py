"""Pytest fixtures and configuration for test suite

This module provides:
1. Frame factories for building Frigate WebSocket messages
2. Settings with a complete, fake environment
3. Mocked uploader and fresh shutdown primitives per test

Factory Functions (exposed as fixtures):
    - make_event_payload(**overrides) -> dict
    - make_frame(payload=None, topic="events", **overrides) -> str
"""
import asyncio
import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from archiver.core.config import Settings
from archiver.core.lifecycle import PendingTracker


REQUIRED_ENV = {
    "FRIGATE_IP_ADDRESS": "192.168.1.50",
    "FRIGATE_PORT": "5000",
    "STORAGE_BACKENDS": "B2",
    "AWS_REGION": "us-west-004",
    "AWS_ENDPOINT": "https://s3.us-west-004.backblazeb2.com",
    "AWS_ACCESS_KEY_ID": "test-key-id",
    "AWS_SECRET_ACCESS_KEY": "test-secret",
    "BUCKET_NAME": "frigate-clips",
}


# =============================================================================
# Factory Functions for Test Frames
# =============================================================================

def _make_event_payload(
    type: str = "end",
    id: str = "1700000000.123456-abc123",
    has_clip: bool = True,
    label: str = "person",
    camera: str = "front",
    end_time=1700000020.5,
    start_time=1700000000.25,
    **overrides
) -> dict:
    """
    Build a decoded Frigate event payload that qualifies for upload by default.

    Example:
        payload = make_event_payload(label="car")
    """
    after = {
        "id": id,
        "has_clip": has_clip,
        "label": label,
        "camera": camera,
        "end_time": end_time,
        "start_time": start_time,
        "score": 0.87,
        "zones": [],
    }
    after.update(overrides)
    return {"type": type, "before": dict(after), "after": after}


def _make_frame(payload=None, topic: str = "events", double_encode: bool = True) -> str:
    """
    Build a raw WebSocket frame.

    "events" payloads are JSON-encoded a second time, as Frigate sends them.
    """
    if payload is None:
        payload = _make_event_payload()
    if double_encode and not isinstance(payload, str):
        payload = json.dumps(payload)
    return json.dumps({"topic": topic, "payload": payload})


@pytest.fixture
def make_event_payload():
    return _make_event_payload


@pytest.fixture
def make_frame():
    return _make_frame


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def env(monkeypatch):
    """Populate every required environment variable."""
    for key, value in REQUIRED_ENV.items():
        monkeypatch.setenv(key, value)
    return REQUIRED_ENV


@pytest.fixture
def settings(env):
    return Settings(_env_file=None)


# =============================================================================
# Pipeline Collaborators
# =============================================================================

@pytest.fixture
def mock_uploader():
    """ClipUploader stand-in whose upload() succeeds immediately."""
    uploader = MagicMock()
    uploader.upload = AsyncMock(return_value=None)
    uploader.bucket_name = REQUIRED_ENV["BUCKET_NAME"]
    return uploader


@pytest.fixture
def pending():
    return PendingTracker()


@pytest.fixture
def shutdown_event():
    return asyncio.Event()
