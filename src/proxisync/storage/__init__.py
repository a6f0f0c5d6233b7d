from proxisync.storage.backends import InMemoryLocationBackend, JsonFileLocationBackend
from proxisync.storage.location_store import LocationStore

__all__ = ["InMemoryLocationBackend", "JsonFileLocationBackend", "LocationStore"]
