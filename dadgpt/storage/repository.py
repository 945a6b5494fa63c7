"""Typed collections of pydantic entities stored as <collection>/<id>.json."""

from __future__ import annotations

import logging
from collections.abc import Collection
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

from dadgpt.storage.store import JsonStore

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class EntityRepository(Generic[M]):
    """Load and save one kind of entity. Entities must have an ``id`` field.

    Entities whose ``state`` is in ``terminal`` rank last in title lookups.
    """

    def __init__(
        self,
        store: JsonStore,
        collection: str,
        model: type[M],
        terminal: Collection[str] = (),
    ) -> None:
        self._store = store
        self._collection = collection
        self._model = model
        self._terminal = frozenset(terminal)

    @property
    def collection(self) -> str:
        return self._collection

    async def get(self, entity_id: str) -> M | None:
        data = await self._store.read([self._collection, entity_id])
        if data is None:
            return None
        return self._model.model_validate(data)

    async def save(self, entity: M) -> M:
        await self._store.write([self._collection, entity.id], entity)
        return entity

    async def delete(self, entity_id: str) -> bool:
        return await self._store.remove([self._collection, entity_id])

    async def all(self) -> list[M]:
        """Every stored entity, skipping documents that no longer validate."""
        entities: list[M] = []
        for entity_id in await self._store.list([self._collection]):
            try:
                entity = await self.get(entity_id)
            except ValidationError:
                logger.warning("Skipping malformed %s record %s", self._collection, entity_id)
                continue
            if entity is not None:
                entities.append(entity)
        return entities

    async def find(self, entity_id: str | None = None, title: str | None = None) -> M | None:
        """Look up by exact id, else by case-insensitive title substring.

        Among title matches, the first one not in a terminal state wins.
        """
        if entity_id:
            entity = await self.get(entity_id)
            if entity is not None:
                return entity
        if title:
            needle = title.lower()
            matches = [e for e in await self.all() if needle in getattr(e, "title", "").lower()]
            for entity in matches:
                if getattr(entity, "state", None) not in self._terminal:
                    return entity
            return matches[0] if matches else None
        return None
