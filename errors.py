class StorefrontError(Exception):
    """Base class for errors the API maps to an HTTP response."""


class NotFoundError(StorefrontError):
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidTransitionError(StorefrontError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from '{current}' to '{requested}'")


class GenerationError(StorefrontError):
    """The AI call failed or its reply could not be turned into products."""


class PersistenceError(StorefrontError):
    """The storage backend is unreachable or rejected a write."""
