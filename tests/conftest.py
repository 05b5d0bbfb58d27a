from __future__ import annotations

import pytest_asyncio

from channel_automod.storage.sqlite import SQLiteStorage


@pytest_asyncio.fixture
async def storage(tmp_path):
    store = SQLiteStorage(tmp_path / "automod.db")
    await store.connect()
    try:
        yield store
    finally:
        await store.disconnect()
