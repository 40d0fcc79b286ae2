"""Shared fixtures.

The FastAPI module builds its storage and record store at import time, so
the environment is pointed at a throwaway directory before anything
imports `app.main`.
"""

import io
import os
import tempfile

import pytest
from PIL import Image

_TMP = tempfile.mkdtemp(prefix="adstudio-tests-")
os.environ["LOCAL_STORAGE_PATH"] = os.path.join(_TMP, "storage")
os.environ["RECORDS_DB_PATH"] = os.path.join(_TMP, "records.db")
os.environ["PUBLIC_BASE_URL"] = "http://testserver"
os.environ["API_KEY"] = "test-key"
os.environ.pop("AZURE_STORAGE_CONNECTION_STRING", None)
os.environ.pop("GEMINI_API_KEY", None)


@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_png(width: int, height: int, color=(255, 255, 255, 255), mode: str = "RGBA") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, (width, height), color).save(buf, "PNG")
    return buf.getvalue()


def open_png(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data)).convert("RGBA")


class SleepRecorder:
    """Stands in for asyncio.sleep and records requested waits."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()
