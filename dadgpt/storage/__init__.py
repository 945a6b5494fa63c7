from dadgpt.storage.repository import EntityRepository
from dadgpt.storage.store import JsonStore, StoragePath

__all__ = ["EntityRepository", "JsonStore", "StoragePath"]
