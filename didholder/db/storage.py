# didholder/db/storage.py
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from didholder.core.config import settings
from didholder.db.models import StorageItem

engine = create_async_engine(settings.db_url, echo=False)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


class KeyValueStorage:
    """
    Origin-scoped durable key-value storage (the wallet's localStorage).
    Values are opaque strings; callers own their serialization.
    """

    def __init__(self, sessionmaker: async_sessionmaker = SessionLocal):
        self._sessionmaker = sessionmaker

    async def get_item(self, key: str) -> str | None:
        async with self._sessionmaker() as s:
            item = await s.get(StorageItem, key)
            return item.value if item else None

    async def set_item(self, key: str, value: str) -> None:
        async with self._sessionmaker() as s:
            item = await s.get(StorageItem, key)
            if item:
                item.value = value
            else:
                s.add(StorageItem(key=key, value=value))
            await s.commit()

    async def remove_item(self, key: str) -> None:
        async with self._sessionmaker() as s:
            await s.execute(delete(StorageItem).where(StorageItem.key == key))
            await s.commit()
