"""Ошибки хранилища документов и единый формат логирования сбоев.

Сбои хранилища не пробрасываются в роутеры: адаптер ловит их, пишет строку в лог
(component, operation, ids, code) и возвращает None / False / пустой список.
Код последнего сбоя хранится в contextvar запроса, роутер превращает его в сообщение."""
import logging
from contextvars import ContextVar

from minio.error import MinioException
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, ProgrammingError

_log = logging.getLogger("launchpad.errors")

_last_failure: ContextVar[str | None] = ContextVar("last_store_failure", default=None)


class DocumentStoreError(Exception):
    """Base class for document store errors."""


class StoreUnavailable(DocumentStoreError):
    """Remote table or blob storage refused the operation (network, missing table, ...)."""

    def __init__(self, message: str, storage: str = "db"):
        super().__init__(message)
        self.storage = storage


class MarkerMismatch(DocumentStoreError):
    """Stored content lacks one or more expected section markers."""

    def __init__(self, missing: list[str]):
        super().__init__(f"missing sections: {', '.join(missing)}")
        self.missing = missing


class DuplicateCanonicalDocument(DocumentStoreError):
    """More than one canonical document of a category exists for a project."""

    def __init__(self, category: str, keep: str, extra: list[str]):
        super().__init__(f"{category}: {len(extra) + 1} documents, keeping {keep}")
        self.category = category
        self.keep = keep
        self.extra = extra


class UnknownSection(DocumentStoreError, KeyError):
    """Section key is not registered. Misconfigured caller, not bad data."""

    def __init__(self, key: str):
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"unknown section: {self.key!r}"


# code -> сообщение для пользователя (без технических деталей)
USER_MESSAGES = {
    "DB_TABLE_NOT_FOUND": "The requested data table does not exist",
    "DB_DUPLICATE_ENTRY": "A record with the same unique identifier already exists",
    "DB_CONSTRAINT_ERROR": "Data integrity constraint violation",
    "DB_CONNECTION_ERROR": "Unable to connect to the server",
    "STORAGE_ERROR": "File storage is unavailable",
    "DB_ERROR": "An unexpected database error occurred",
}


def classify_store_error(exc: BaseException) -> str:
    """Сводит исключение SQLAlchemy / MinIO / сети к стабильному коду."""
    if isinstance(exc, IntegrityError):
        text = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
        if "unique" in text or "duplicate" in text:
            return "DB_DUPLICATE_ENTRY"
        return "DB_CONSTRAINT_ERROR"
    if isinstance(exc, (OperationalError, ProgrammingError)):
        text = str(exc).lower()
        if "no such table" in text or "does not exist" in text or "undefinedtable" in text:
            return "DB_TABLE_NOT_FOUND"
        if isinstance(exc, OperationalError):
            return "DB_CONNECTION_ERROR"
        return "DB_ERROR"
    if isinstance(exc, (InterfaceError, ConnectionError, OSError)):
        return "DB_CONNECTION_ERROR"
    if isinstance(exc, MinioException):
        return "STORAGE_ERROR"
    if isinstance(exc, StoreUnavailable):
        return "STORAGE_ERROR" if exc.storage == "blob" else "DB_CONNECTION_ERROR"
    return "DB_ERROR"


def user_message(code: str) -> str:
    return USER_MESSAGES.get(code, USER_MESSAGES["DB_ERROR"])


def clear_last_failure() -> None:
    _last_failure.set(None)


def failure_detail(action: str) -> str:
    """'<действие>: <сообщение для пользователя>' по последнему сбою в текущем запросе."""
    code = _last_failure.get()
    if code is None:
        return action
    return f"{action}: {user_message(code)}"


def log_failure(component: str, operation: str, exc: BaseException, **context) -> str:
    """Пишет сбой одной строкой key=value и запоминает код для ответа. Возвращает код ошибки."""
    code = classify_store_error(exc)
    _last_failure.set(code)
    ctx = " ".join(f"{k}={v}" for k, v in context.items() if v is not None)
    _log.warning(
        "component=%s operation=%s code=%s %s error=%s",
        component,
        operation,
        code,
        ctx,
        exc,
    )
    return code
