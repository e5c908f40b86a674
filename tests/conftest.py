from __future__ import annotations

import os
from typing import TYPE_CHECKING

import httpx
import pytest
from helpers import BUCKET, ENDPOINT, GV_HOST, WEBHOOK, SleepRecorder, Upstream

from b2_download_gateway.settings import GatewaySettings

if TYPE_CHECKING:
    from collections.abc import Generator


@pytest.fixture
def gateway_env_values() -> dict[str, str]:
    return {
        "BUCKET_NAME": BUCKET,
        "B2_ENDPOINT": ENDPOINT,
        "B2_APPLICATION_KEY_ID": "0025f1b2c3d4e5f0000000001",
        "B2_APPLICATION_KEY": "K002abcdefghijklmnopqrstuvwxyz0",
        "GV_HOSTNAME": GV_HOST,
        "GV_INTERNAL_FOLDER": "files",
        "DISCORD_WEBHOOK": WEBHOOK,
        "RETRY_DELAY": "0.5",
    }


@pytest.fixture
def gateway_env(gateway_env_values: dict[str, str]) -> Generator[dict[str, str]]:
    """Set the gateway environment variables for the duration of a test."""
    original_values = {}
    for key, value in gateway_env_values.items():
        original_values[key] = os.environ.get(key)
        os.environ[key] = value

    yield gateway_env_values

    for key, original_value in original_values.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value


@pytest.fixture
def settings(gateway_env_values: dict[str, str]) -> GatewaySettings:
    return GatewaySettings(**gateway_env_values)


@pytest.fixture
def upstream() -> Upstream:
    return Upstream(
        auth_json={"id": 42, "file_path": "/files/rpg/game.zip", "title": "RPG"},
        b2_responses=[httpx.Response(200, content=b"game bytes")],
    )


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()
