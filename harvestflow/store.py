"""Session context persistence."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from .types import SessionContext

logger = logging.getLogger("harvestflow.store")


class SessionStore(Protocol):
    async def save(self, context: SessionContext) -> None: ...

    async def load(self) -> SessionContext | None: ...

    async def clear(self) -> None: ...


def _decode(payload: Any, *, source: str) -> SessionContext | None:
    try:
        return SessionContext.from_document(payload)
    except ValidationError as exc:
        logger.warning(
            "session_document_invalid",
            extra={"source": source, "error_count": exc.error_count()},
        )
        return None


class JsonFileSessionStore:
    """Single JSON document on disk, replaced atomically on every save."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def save(self, context: SessionContext) -> None:
        context.touch()
        body = json.dumps(context.to_document(), ensure_ascii=False, indent=2)
        await asyncio.to_thread(self._write_once, body)
        logger.debug(
            "session_saved",
            extra={"path": str(self._path), "session_id": context.session_id},
        )

    def _write_once(self, body: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(body)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def load(self) -> SessionContext | None:
        raw = await asyncio.to_thread(self._read_once)
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning(
                "session_document_corrupt",
                extra={"path": str(self._path), "error": str(exc)},
            )
            return None
        return _decode(payload, source=str(self._path))

    def _read_once(self) -> bytes | None:
        try:
            return self._path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning(
                "session_read_failed",
                extra={"path": str(self._path), "error": str(exc)},
            )
            return None

    async def clear(self) -> None:
        await asyncio.to_thread(self._path.unlink, missing_ok=True)
        logger.info("session_cleared", extra={"path": str(self._path)})


class InMemorySessionStore:
    """Keeps a serialised copy so callers cannot mutate the saved state."""

    def __init__(self) -> None:
        self._document: str | None = None
        self.save_count = 0

    async def save(self, context: SessionContext) -> None:
        context.touch()
        self._document = json.dumps(context.to_document(), ensure_ascii=False)
        self.save_count += 1

    async def load(self) -> SessionContext | None:
        if self._document is None:
            return None
        return _decode(json.loads(self._document), source="memory")

    async def clear(self) -> None:
        self._document = None

    @property
    def document(self) -> dict[str, Any] | None:
        if self._document is None:
            return None
        return json.loads(self._document)


__all__ = ["InMemorySessionStore", "JsonFileSessionStore", "SessionStore"]
