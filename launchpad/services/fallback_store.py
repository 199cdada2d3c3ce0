"""Локальное хранилище документов на случай недоступности БД.

Строковое key-value по ключу document_{project_id}_{type}; значение - JSON
{content, timestamp, needs_sync, id, remote_id}. Старые записи с голым текстом тоже читаются.
Хранилище создаётся при старте приложения и передаётся в DocumentStore явно."""
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

from launchpad.schemas import LOCAL_ID_PREFIX

_log = logging.getLogger(__name__)

KEY_PREFIX = "document_"


def fallback_key(project_id: str, document_type: str) -> str:
    return f"{KEY_PREFIX}{project_id}_{document_type}"


def project_prefix(project_id: str) -> str:
    return f"{KEY_PREFIX}{project_id}_"


def type_from_key(project_id: str, key: str) -> str | None:
    prefix = project_prefix(project_id)
    if not key.startswith(prefix):
        return None
    return key[len(prefix):] or None


def split_key(key: str) -> tuple[str, str]:
    """(project_id, type) из ключа. В UUID проекта нет подчёркиваний, в типе они бывают."""
    rest = key[len(KEY_PREFIX):] if key.startswith(KEY_PREFIX) else key
    project_id, _, document_type = rest.partition("_")
    return project_id, document_type


@dataclass
class FallbackEntry:
    """Локальная копия документа.

    id - постоянный local_ id, под которым копия видна без БД;
    remote_id - id строки в БД, если копия уже была синхронизирована."""

    content: str
    timestamp: str
    needs_sync: bool = True
    id: str | None = None
    remote_id: str | None = None

    @classmethod
    def pending(cls, content: str, local_id: str | None = None, remote_id: str | None = None) -> "FallbackEntry":
        return cls(
            content=content,
            timestamp=datetime.now(timezone.utc).isoformat(),
            needs_sync=True,
            id=local_id,
            remote_id=remote_id,
        )

    @classmethod
    def synced(cls, content: str, remote_id: str, local_id: str | None = None) -> "FallbackEntry":
        return cls(
            content=content,
            timestamp=datetime.now(timezone.utc).isoformat(),
            needs_sync=False,
            id=local_id,
            remote_id=remote_id,
        )

    @classmethod
    def parse(cls, raw: str) -> "FallbackEntry":
        try:
            data = json.loads(raw)
        except ValueError:
            data = None
        if not isinstance(data, dict):
            # старый формат: в значении сразу текст документа
            return cls(content=raw, timestamp=datetime.now(timezone.utc).isoformat(), needs_sync=True)
        local_id = data.get("id")
        remote_id = data.get("remote_id")
        if local_id and not str(local_id).startswith(LOCAL_ID_PREFIX):
            # старые записи хранили в id сразу id строки в БД
            local_id, remote_id = None, remote_id or local_id
        return cls(
            content=str(data.get("content") or ""),
            timestamp=str(data.get("timestamp") or datetime.now(timezone.utc).isoformat()),
            needs_sync=bool(data.get("needs_sync", data.get("needsSync", True))),
            id=local_id,
            remote_id=remote_id,
        )

    def dumps(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @property
    def updated_at(self) -> datetime:
        try:
            ts = datetime.fromisoformat(self.timestamp.replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(timezone.utc)
        return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


class FallbackStore(ABC):
    """Process-wide string key-value store. Last write wins, no locking."""

    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]: ...

    def get_entry(self, key: str) -> FallbackEntry | None:
        raw = self.get(key)
        if raw is None:
            return None
        return FallbackEntry.parse(raw)

    def set_entry(self, key: str, entry: FallbackEntry) -> None:
        self.set(key, entry.dumps())


class InMemoryFallbackStore(FallbackStore):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]


class JsonFileFallbackStore(InMemoryFallbackStore):
    """Same store persisted as one JSON object; the file is rewritten on every change."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(self._load())

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            _log.warning("fallback store unreadable, starting empty: path=%s error=%s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise

    def set(self, key: str, value: str) -> None:
        super().set(key, value)
        self._flush()

    def delete(self, key: str) -> None:
        if key not in self._data:
            return
        super().delete(key)
        self._flush()
