import logging
from typing import Any, Callable, Dict, List

from memorykeeper.core.errors import InvalidPayload, UnknownKind

log = logging.getLogger("jobs.handlers")

OBJECT_DELETE = "object-delete"
TRANSCRIBE = "transcribe"

Handler = Callable[[Dict[str, Any]], Any]


class HandlerRegistry:
    """Maps a job kind to the callable that executes its payload.

    New kinds are added by registering a handler; the scheduler never needs
    to change.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}
        self._max_attempts: Dict[str, int] = {}

    def register(self, kind: str, handler: Handler, max_attempts: int | None = None) -> None:
        if not kind:
            raise ValueError("kind cannot be empty")
        self._handlers[kind] = handler
        if max_attempts is not None:
            self._max_attempts[kind] = max_attempts
        else:
            self._max_attempts.pop(kind, None)

    def handler(self, kind: str, max_attempts: int | None = None):
        def _wrap(fn: Handler) -> Handler:
            self.register(kind, fn, max_attempts=max_attempts)
            return fn
        return _wrap

    def get(self, kind: str) -> Handler:
        try:
            return self._handlers[kind]
        except KeyError:
            raise UnknownKind(kind) from None

    def max_attempts_for(self, kind: str) -> int | None:
        return self._max_attempts.get(kind)

    def kinds(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, kind: str) -> bool:
        return kind in self._handlers


def _require(payload: Dict[str, Any], field: str) -> Any:
    value = payload.get(field)
    if not value:
        raise InvalidPayload(f"payload is missing {field!r}")
    return value


def object_delete_handler(object_store) -> Handler:
    """`object_store` needs a `delete(key)` method."""

    def handle(payload: Dict[str, Any]) -> None:
        key = _require(payload, "key")
        if object_store is None:
            log.warning("object store is not configured; skipping delete of %s", key)
            return
        object_store.delete(key)
        log.info("deleted %s from object storage", key)

    return handle


def transcribe_handler(transcriber) -> Handler:
    """`transcriber` needs a `transcribe(key, photo_id)` method."""

    def handle(payload: Dict[str, Any]) -> None:
        key = _require(payload, "key")
        photo_id = _require(payload, "photo_id")
        if transcriber is None:
            log.warning("transcriber is not configured; skipping %s", key)
            return
        transcriber.transcribe(key, photo_id)

    return handle


def build_default_registry(object_store=None, transcriber=None) -> HandlerRegistry:
    registry = HandlerRegistry()
    registry.register(OBJECT_DELETE, object_delete_handler(object_store))
    registry.register(TRANSCRIBE, transcribe_handler(transcriber))
    return registry


# collaborators are wired in by the application at startup
registry = build_default_registry()
