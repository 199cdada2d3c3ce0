"""Документы проекта: таблица documents + MinIO + локальное запасное хранилище.

Ни один метод не пробрасывает сбой хранилища наружу: ошибка пишется в лог,
вызывающий получает None / False / []. Создание идёт по цепочке стратегий
(insert -> upsert -> insert + повторное чтение); если все упали, документ
остаётся только в локальном хранилище и получает id с префиксом local_.

Синхронизированные копии строк БД тоже лежат в локальном хранилище (по одной на
тип документа проекта), чтобы документы были видны и без БД. Копия хранит свой
постоянный local_ id и id строки; их число ограничено synced_limit."""
import asyncio
import logging
import random
import string
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import PurePosixPath
from urllib.parse import unquote, urlsplit
from uuid import UUID

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from launchpad.config import Settings
from launchpad.models import CURRENT_SCHEMA_VERSION, Document, utcnow
from launchpad.schemas import LOCAL_ID_PREFIX, DocumentCreate, DocumentRecord, DocumentUpdate
from launchpad.services.blob_storage import MinioBlobStorage
from launchpad.services.errors import StoreUnavailable, log_failure
from launchpad.services.fallback_store import (
    KEY_PREFIX,
    FallbackEntry,
    FallbackStore,
    InMemoryFallbackStore,
    JsonFileFallbackStore,
    fallback_key,
    project_prefix,
    split_key,
    type_from_key,
)
from launchpad.services.sections import document_title_for_type

_log = logging.getLogger(__name__)

COMPONENT = "DocumentStore"
UPLOADED_TYPE = "uploaded"
LOCAL_USER_ID = "local-user"
DEFAULT_SYNCED_LIMIT = 500


@dataclass(frozen=True)
class CreateStrategy:
    """One way of writing a new row; tried up to `attempts` times before the next one."""
    name: str
    attempts: int = 1


DEFAULT_CREATE_POLICY: tuple[CreateStrategy, ...] = (
    CreateStrategy("insert"),
    CreateStrategy("upsert"),
    CreateStrategy("insert_read_back"),
)


def create_policy(attempts: int = 1) -> tuple[CreateStrategy, ...]:
    return tuple(CreateStrategy(s.name, max(1, attempts)) for s in DEFAULT_CREATE_POLICY)


def _random_suffix(length: int = 7) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def local_document_id() -> str:
    return f"{LOCAL_ID_PREFIX}{int(time.time() * 1000)}_{_random_suffix()}"


def is_local_id(document_id: str) -> bool:
    return document_id.startswith(LOCAL_ID_PREFIX)


def _parse_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


class DocumentStore:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        fallback: FallbackStore,
        blobs: MinioBlobStorage | None = None,
        policy: tuple[CreateStrategy, ...] | None = None,
        synced_limit: int | None = DEFAULT_SYNCED_LIMIT,
    ) -> None:
        self._sessions = session_maker
        self.fallback = fallback
        self.blobs = blobs
        self.policy = policy or DEFAULT_CREATE_POLICY
        # сколько синхронизированных копий держать локально; None - без ограничения
        self.synced_limit = synced_limit
        self._strategies = {
            "insert": self._insert_returning,
            "upsert": self._upsert,
            "insert_read_back": self._insert_read_back,
        }
        unknown = [s.name for s in self.policy if s.name not in self._strategies]
        if unknown:
            raise ValueError(f"unknown create strategies: {unknown}")

    # --- create -------------------------------------------------------------

    async def create(self, params: DocumentCreate) -> DocumentRecord | None:
        try:
            return await self._create(params)
        except Exception as e:
            log_failure(COMPONENT, "create", e, project_id=params.project_id, type=params.type)
            return None

    async def _create(self, params: DocumentCreate) -> DocumentRecord:
        now = utcnow()
        if not params.title.strip():
            params = params.model_copy(update={"title": f"Document {now:%Y-%m-%d %H:%M:%S}"})
        key = fallback_key(str(params.project_id), params.type)
        values = {
            "id": uuid.uuid4(),
            "project_id": params.project_id,
            "user_id": params.user_id,
            "title": params.title,
            "type": params.type,
            "content": params.content,
            "is_auto_generated": params.is_auto_generated,
            "file_path": params.file_path,
            "file_type": params.file_type,
            "file_size": params.file_size,
            "schema_version": CURRENT_SCHEMA_VERSION,
            "created_at": now,
            "updated_at": now,
        }
        for strategy in self.policy:
            run = self._strategies[strategy.name]
            for attempt in range(1, strategy.attempts + 1):
                try:
                    row = await run(values)
                except Exception as e:
                    log_failure(
                        COMPONENT,
                        f"create.{strategy.name}",
                        e,
                        project_id=params.project_id,
                        type=params.type,
                        attempt=attempt,
                    )
                    continue
                if row is None:
                    continue
                record = DocumentRecord.model_validate(row)
                self._remember(record)
                return record

        local_id = local_document_id()
        _log.warning(
            "all create strategies failed, document kept locally: project_id=%s type=%s id=%s",
            params.project_id,
            params.type,
            local_id,
        )
        self._write_entry(key, FallbackEntry.pending(params.content, local_id))
        return DocumentRecord(
            id=local_id,
            project_id=str(params.project_id),
            user_id=params.user_id,
            title=params.title,
            type=params.type,
            content=params.content,
            is_auto_generated=params.is_auto_generated,
            file_path=params.file_path,
            file_type=params.file_type,
            file_size=params.file_size,
            schema_version=CURRENT_SCHEMA_VERSION,
            created_at=now,
            updated_at=now,
        )

    async def _insert_returning(self, values: dict) -> Document | None:
        async with self._sessions() as session, session.begin():
            result = await session.scalars(insert(Document).returning(Document), [values])
            return result.one()

    async def _upsert(self, values: dict) -> Document | None:
        async with self._sessions() as session, session.begin():
            row = await session.merge(Document(**values))
            await session.flush()
            return row

    async def _insert_read_back(self, values: dict) -> Document | None:
        async with self._sessions() as session, session.begin():
            await session.execute(insert(Document).values(**values))
        async with self._sessions() as session:
            return await session.get(Document, values["id"])

    # --- read ---------------------------------------------------------------

    async def is_available(self) -> bool:
        """Отвечает ли таблица documents (одна строка, без данных)."""
        try:
            async with self._sessions() as session:
                await session.execute(select(Document.id).limit(1))
            return True
        except Exception as e:
            log_failure(COMPONENT, "ping", e)
            return False

    async def get(self, document_id: str) -> DocumentRecord | None:
        if is_local_id(document_id):
            found = self._find_local(document_id)
            if found is None:
                return None
            key, entry = found
            project_id, document_type = split_key(key)
            return self._local_record(project_id, document_type, entry)
        uid = _parse_uuid(document_id)
        if uid is None:
            return None
        try:
            async with self._sessions() as session:
                row = await session.get(Document, uid)
                return DocumentRecord.model_validate(row) if row is not None else None
        except Exception as e:
            log_failure(COMPONENT, "get", e, id=document_id)
            return None

    async def find(self, project_id: UUID, document_type: str, title: str | None = None) -> list[DocumentRecord]:
        """Документы проекта по типу (и заголовку), новые первыми."""
        q = select(Document).where(Document.project_id == project_id, Document.type == document_type)
        if title is not None:
            q = q.where(Document.title == title)
        try:
            return await self._select(q.order_by(Document.updated_at.desc()))
        except Exception as e:
            log_failure(COMPONENT, "find", e, project_id=project_id, type=document_type, title=title)
            return []

    async def find_by_type_prefix(self, project_id: UUID, prefix: str) -> list[DocumentRecord]:
        q = (
            select(Document)
            .where(Document.project_id == project_id, Document.type.startswith(prefix, autoescape=True))
            .order_by(Document.updated_at.desc())
        )
        try:
            return await self._select(q)
        except Exception as e:
            log_failure(COMPONENT, "find_by_type_prefix", e, project_id=project_id, prefix=prefix)
            return []

    async def read(self, project_id: UUID) -> list[DocumentRecord]:
        """Все документы проекта: из БД плюс несинхронизированные локальные копии.

        Локальная копия попадает в список, только если в БД нет документа того же типа.
        Если БД недоступна, возвращаются все локальные копии проекта.
        """
        try:
            remote = await self._select(
                select(Document).where(Document.project_id == project_id).order_by(Document.updated_at.desc())
            )
        except Exception as e:
            log_failure(COMPONENT, "read", e, project_id=project_id)
            return self._local_documents(str(project_id), pending_only=False)
        remote_types = {d.type for d in remote}
        local = [
            d
            for d in self._local_documents(str(project_id), pending_only=True)
            if d.type not in remote_types
        ]
        return remote + local

    async def sync_pending(self, project_id: UUID) -> int:
        """Переносит в БД локальные записи с needs_sync. Возвращает число перенесённых."""
        synced = 0
        for key in self._fallback_keys(project_prefix(str(project_id))):
            document_type = type_from_key(str(project_id), key)
            entry = self._read_entry(key)
            if document_type is None or entry is None or not entry.needs_sync or not entry.content:
                continue
            title = document_title_for_type(document_type)
            try:
                target = await self._sync_target(project_id, document_type, title, entry.remote_id)
            except Exception as e:
                log_failure(COMPONENT, "sync_pending", e, project_id=project_id, type=document_type)
                break
            if target is not None:
                if target.updated_at >= entry.updated_at:
                    # в БД уже более свежая версия
                    self._remember(target)
                    continue
                record = await self.update(target.id, DocumentUpdate(content=entry.content))
            else:
                record = await self.create(
                    DocumentCreate(
                        project_id=project_id,
                        user_id=LOCAL_USER_ID,
                        title=title,
                        type=document_type,
                        content=entry.content,
                        is_auto_generated=True,
                    )
                )
            # update / create уже записали синхронизированную копию
            if record is None or record.is_local:
                continue
            synced += 1
        if synced:
            _log.info("synced local documents: project_id=%s count=%s", project_id, synced)
        return synced

    async def _sync_target(
        self, project_id: UUID, document_type: str, title: str, remote_id: str | None
    ) -> DocumentRecord | None:
        """Строка БД для локальной копии: по id строки, иначе по типу и стандартному заголовку."""
        q = select(Document).where(Document.project_id == project_id)
        uid = _parse_uuid(remote_id) if remote_id else None
        if uid is not None:
            found = await self._select(q.where(Document.id == uid))
            if found:
                return found[0]
        found = await self._select(
            q.where(Document.type == document_type, Document.title == title)
            .order_by(Document.updated_at.desc())
            .limit(1)
        )
        return found[0] if found else None

    # --- update / delete ------------------------------------------------------

    async def update(
        self,
        document_id: str,
        changes: DocumentUpdate,
        *,
        local_hint: DocumentRecord | None = None,
    ) -> DocumentRecord | None:
        values = changes.model_dump(exclude_unset=True, exclude_none=True)
        if is_local_id(document_id):
            return self._update_local(document_id, values, local_hint)
        uid = _parse_uuid(document_id)
        if uid is None:
            return None
        try:
            async with self._sessions() as session, session.begin():
                row = await session.get(Document, uid)
                if row is None:
                    return None
                for field, value in values.items():
                    setattr(row, field, value)
                row.updated_at = utcnow()
                await session.flush()
                record = DocumentRecord.model_validate(row)
        except Exception as e:
            log_failure(COMPONENT, "update", e, id=document_id)
            return None
        self._remember(record)
        return record

    def _update_local(
        self, document_id: str, values: dict, hint: DocumentRecord | None
    ) -> DocumentRecord | None:
        found = self._find_local(document_id)
        if found is not None:
            key, entry = found
            project_id, document_type = split_key(key)
        elif hint is not None:
            project_id, document_type = hint.project_id, hint.type
            key = fallback_key(project_id, document_type)
            entry = FallbackEntry.pending(hint.content)
        else:
            _log.warning("local document not found: id=%s", document_id)
            return None
        # id строки сохраняется для синхронизации
        entry = FallbackEntry.pending(values.get("content", entry.content), document_id, entry.remote_id)
        if not self._write_entry(key, entry):
            return None
        if hint is not None:
            return hint.model_copy(update={**values, "updated_at": entry.updated_at})
        return self._local_record(project_id, document_type, entry)

    async def delete(self, document_id: str) -> bool:
        if is_local_id(document_id):
            found = self._find_local(document_id)
            if found is None:
                return False
            return self._drop_entry(found[0])
        uid = _parse_uuid(document_id)
        if uid is None:
            return False
        try:
            async with self._sessions() as session, session.begin():
                row = await session.get(Document, uid)
                if row is None:
                    return False
                project_id = str(row.project_id)
                if row.file_path:
                    await self._remove_file(row)
                await session.delete(row)
        except Exception as e:
            log_failure(COMPONENT, "delete", e, id=document_id)
            return False
        # локальная копия строки удаляется вместе с ней
        self._forget_remote(project_id, str(uid))
        return True

    async def _remove_file(self, row: Document) -> None:
        """Удаляет файл из бакета; сбой не мешает удалению записи."""
        key = object_key_for(str(row.project_id), row.file_path or "")
        if self.blobs is None:
            log_failure(COMPONENT, "delete.file", StoreUnavailable("blob storage not configured", "blob"), key=key)
            return
        try:
            await asyncio.to_thread(self.blobs.remove, key)
        except Exception as e:
            log_failure(COMPONENT, "delete.file", e, id=row.id, key=key)

    # --- upload ---------------------------------------------------------------

    async def upload(
        self,
        project_id: UUID,
        user_id: str,
        filename: str,
        content_type: str,
        data: bytes,
        title: str | None = None,
    ) -> DocumentRecord | None:
        ext = PurePosixPath(filename).suffix.lstrip(".").lower()
        name = f"{int(time.time() * 1000)}-{_random_suffix()}"
        if ext:
            name = f"{name}.{ext}"
        key = f"{project_id}/{name}"
        if self.blobs is None:
            log_failure(COMPONENT, "upload", StoreUnavailable("blob storage not configured", "blob"), key=key)
            return None
        try:
            await asyncio.to_thread(self.blobs.upload, key, data, content_type)
            url = await asyncio.to_thread(self.blobs.public_url, key)
        except Exception as e:
            log_failure(COMPONENT, "upload", e, project_id=project_id, key=key)
            return None
        return await self.create(
            DocumentCreate(
                project_id=project_id,
                user_id=user_id,
                title=title or filename,
                type=UPLOADED_TYPE,
                content=f"Uploaded file: {filename}",
                is_auto_generated=False,
                file_path=url,
                file_type=ext or None,
                file_size=len(data),
            )
        )

    # --- helpers --------------------------------------------------------------

    async def _select(self, q) -> list[DocumentRecord]:
        async with self._sessions() as session:
            result = await session.execute(q)
            return [DocumentRecord.model_validate(row) for row in result.scalars().all()]

    def _fallback_keys(self, prefix: str) -> list[str]:
        try:
            return self.fallback.keys(prefix)
        except Exception as e:
            log_failure(COMPONENT, "fallback.keys", e, prefix=prefix)
            return []

    def _read_entry(self, key: str) -> FallbackEntry | None:
        try:
            return self.fallback.get_entry(key)
        except Exception as e:
            log_failure(COMPONENT, "fallback.get", e, key=key)
            return None

    def _write_entry(self, key: str, entry: FallbackEntry) -> bool:
        try:
            self.fallback.set_entry(key, entry)
            return True
        except Exception as e:
            log_failure(COMPONENT, "fallback.set", e, key=key)
            return False

    def _drop_entry(self, key: str) -> bool:
        try:
            self.fallback.delete(key)
            return True
        except Exception as e:
            log_failure(COMPONENT, "fallback.delete", e, key=key)
            return False

    def _remember(self, record: DocumentRecord) -> None:
        """Синхронизированная копия строки под ключом её типа. local_ id копии не меняется."""
        key = fallback_key(record.project_id, record.type)
        local_id = None
        for k in self._fallback_keys(project_prefix(record.project_id)):
            entry = self._read_entry(k)
            if entry is None or entry.remote_id != record.id:
                continue
            local_id = local_id or entry.id
            if k != key:
                # тип документа сменился
                self._drop_entry(k)
        self._write_entry(key, FallbackEntry.synced(record.content, record.id, local_id or local_document_id()))
        self._prune_synced()

    def _forget_remote(self, project_id: str, remote_id: str) -> None:
        for key in self._fallback_keys(project_prefix(project_id)):
            entry = self._read_entry(key)
            if entry is not None and entry.remote_id == remote_id:
                self._drop_entry(key)

    def _prune_synced(self) -> None:
        """Оставляет synced_limit самых свежих синхронизированных копий; несинхронизированные не трогает."""
        if self.synced_limit is None:
            return
        synced = []
        for key in self._fallback_keys(KEY_PREFIX):
            entry = self._read_entry(key)
            if entry is not None and not entry.needs_sync:
                synced.append((entry.updated_at, key))
        excess = len(synced) - max(0, self.synced_limit)
        if excess <= 0:
            return
        synced.sort(key=lambda pair: pair[0])
        for _, key in synced[:excess]:
            self._drop_entry(key)
        _log.info("pruned synced local copies: count=%s limit=%s", excess, self.synced_limit)

    def _find_local(self, document_id: str) -> tuple[str, FallbackEntry] | None:
        for key in self._fallback_keys(KEY_PREFIX):
            entry = self._read_entry(key)
            if entry is not None and entry.id == document_id:
                return key, entry
        return None

    def _local_documents(self, project_id: str, pending_only: bool) -> list[DocumentRecord]:
        docs = []
        for key in self._fallback_keys(project_prefix(project_id)):
            document_type = type_from_key(project_id, key)
            entry = self._read_entry(key)
            if document_type is None or entry is None or not entry.content:
                continue
            if pending_only and not entry.needs_sync:
                continue
            if entry.id is None:
                # записи старого формата получают local_ id один раз, дальше он постоянный
                entry.id = local_document_id()
                self._write_entry(key, entry)
            docs.append(self._local_record(project_id, document_type, entry))
        return docs

    @staticmethod
    def _local_record(project_id: str, document_type: str, entry: FallbackEntry) -> DocumentRecord:
        ts: datetime = entry.updated_at
        return DocumentRecord(
            id=entry.id,
            project_id=project_id,
            user_id=LOCAL_USER_ID,
            title=document_title_for_type(document_type),
            type=document_type,
            content=entry.content,
            is_auto_generated=True,
            created_at=ts,
            updated_at=ts,
        )


def object_key_for(project_id: str, file_path: str) -> str:
    """Ключ объекта в бакете по сохранённой ссылке: {project_id}/{имя файла}."""
    path = urlsplit(file_path).path if "://" in file_path else file_path
    return f"{project_id}/{unquote(PurePosixPath(path).name)}"


def init_document_store(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    fallback: FallbackStore | None = None,
    blobs: MinioBlobStorage | None = None,
) -> DocumentStore:
    """Собирает хранилище при старте приложения; глобального состояния нет."""
    if fallback is None:
        path = settings.get_fallback_store_path()
        fallback = JsonFileFallbackStore(path) if path is not None else InMemoryFallbackStore()
    return DocumentStore(
        session_maker,
        fallback,
        blobs if blobs is not None else MinioBlobStorage(settings),
        policy=create_policy(settings.create_attempts),
        synced_limit=settings.fallback_synced_limit,
    )
