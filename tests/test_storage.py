from __future__ import annotations

import pytest

from spark_ledger.storage.local import LocalFileStorage
from spark_ledger.storage.memory import InMemoryFileStorage


@pytest.mark.asyncio
async def test_local_storage_round_trip(tmp_path):
    storage = LocalFileStorage(tmp_path / "uploads", base_url="https://files.example.com/")

    stored = await storage.put("user-1/deck.pdf", b"%PDF", "application/pdf")
    assert stored.size == 4
    assert stored.url == "https://files.example.com/user-1/deck.pdf"
    assert await storage.get("user-1/deck.pdf") == b"%PDF"

    with pytest.raises(FileExistsError):
        await storage.put("user-1/deck.pdf", b"again")

    assert await storage.delete("user-1/deck.pdf") is True
    assert await storage.delete("user-1/deck.pdf") is False
    assert await storage.get("user-1/deck.pdf") is None


@pytest.mark.asyncio
async def test_local_storage_refuses_paths_outside_root(tmp_path):
    storage = LocalFileStorage(tmp_path / "uploads")

    with pytest.raises(ValueError):
        await storage.put("../escape.txt", b"x")


@pytest.mark.asyncio
async def test_memory_storage_refuses_overwrite():
    storage = InMemoryFileStorage()
    await storage.put("a.txt", b"1")

    with pytest.raises(FileExistsError):
        await storage.put("a.txt", b"2")
