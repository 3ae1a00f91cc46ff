"""Shared fixtures for tests."""
import pytest
import pytest_asyncio

from video_bookmarks.store import BookmarkStore


TINY_PNG = (
    "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


SAMPLE_RECORDS = [
    {
        "subjectId": "dQw4w9WgXcQ",
        "subjectTitle": "Rick Astley - Never Gonna Give You Up",
        "time": 43,
        "timeLabel": "0:43",
        "note": "First chorus",
        "subtitle": "Never gonna give you up",
        "tags": ["music", "rickroll"],
        "color": "#ff5722",
        "addedAt": 1_700_000_000_000,
    },
    {
        "subjectId": "dQw4w9WgXcQ",
        "subjectTitle": "Rick Astley - Never Gonna Give You Up",
        "time": 120,
        "timeLabel": "2:00",
        "note": "Second verse",
        "subtitle": "A different part of the song",
        "tags": ["music", "rickroll"],
        "color": "#2196f3",
        "addedAt": 1_700_000_100_000,
    },
    {
        "subjectId": "9bZkp7q19f0",
        "subjectTitle": "Gangnam Style",
        "time": 60,
        "note": "Horse dance",
        "subtitle": "Oppa",
        "tags": ["history", "dance"],
        "color": "purple",
        "addedAt": 1_700_000_200_000,
        "imageData": TINY_PNG,
    },
    {
        "subjectId": "jNQXAC9IVRw",
        "time": 5,
        "note": "Me at the zoo",
        "addedAt": 1_700_000_300_000,
    },
]


@pytest.fixture
def sample_records():
    """Return fresh copies of the sample records (no ids)."""
    return [dict(record) for record in SAMPLE_RECORDS]


@pytest.fixture
def db_path(tmp_path):
    """Return path for a temporary bookmarks database."""
    return tmp_path / "bookmarks.db"


@pytest_asyncio.fixture
async def store(db_path):
    """Create and open a test bookmark store."""
    s = BookmarkStore(db_path, lock_timeout=0.5, import_policy="reject")
    await s.open()
    yield s
    await s.close()
