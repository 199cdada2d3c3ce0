"""Чистка документов проекта при открытии проекта.

Удаляет документы старых форматов, для каждой канонической категории оставляет
ровно один валидный структурированный документ (создаёт из заглушек, если нет ни одного).
Повторный запуск на приведённом проекте ничего не меняет."""
import logging
from uuid import UUID

from launchpad.models import CURRENT_SCHEMA_VERSION
from launchpad.schemas import LOCAL_ID_PREFIX, DocumentCreate, DocumentRecord, MigrationReport
from launchpad.services.document_store import DocumentStore
from launchpad.services.errors import DuplicateCanonicalDocument, MarkerMismatch
from launchpad.services.markers import check_sections, encode
from launchpad.services.sections import (
    CANONICAL_CATEGORIES,
    DocumentCategory,
    placeholders_for,
    section_keys,
)

_log = logging.getLogger(__name__)

MIN_VALID_SECTIONS = 2
DEFAULT_PROJECT_TITLE = "Project Plan"


class LegacyMatcher:
    """Признаки документов, записанных до разделения на разделы."""

    legacy_types = frozenset({
        "project",
        "project_description",
        "project_goals",
        "project_features",
        "project_considerations",
    })
    legacy_titles = frozenset({"Document - project"})

    def is_legacy(self, doc: DocumentRecord) -> bool:
        if doc.schema_version is not None and doc.schema_version >= CURRENT_SCHEMA_VERSION:
            return False
        return (
            doc.type in self.legacy_types
            or doc.title in self.legacy_titles
            or (doc.type != DocumentCategory.PROJECT_OVERVIEW.value and "Project" in doc.title)
            or LOCAL_ID_PREFIX in doc.id
        )


def is_valid_canonical(doc: DocumentRecord, category: DocumentCategory) -> bool:
    try:
        check_sections(doc.content, section_keys(category), minimum=MIN_VALID_SECTIONS)
    except MarkerMismatch as e:
        _log.info("invalid %s document: id=%s %s", category.value, doc.id, e)
        return False
    return True


def pick_canonical(valid: list[DocumentRecord], category: DocumentCategory) -> DocumentRecord:
    """Единственный валидный документ категории; при нескольких - DuplicateCanonicalDocument (свежий первым)."""
    ordered = sorted(valid, key=lambda d: d.updated_at, reverse=True)
    if len(ordered) > 1:
        raise DuplicateCanonicalDocument(category.value, ordered[0].id, [d.id for d in ordered[1:]])
    return ordered[0]


def default_document(
    category: DocumentCategory,
    project_title: str | None = None,
    project_description: str | None = None,
) -> str:
    """Документ категории из заглушек; в обзор подставляется описание проекта."""
    sections = {key: "" for key in section_keys(category)}
    title = category.canonical_title
    if category is DocumentCategory.PROJECT_OVERVIEW:
        title = project_title or DEFAULT_PROJECT_TITLE
        sections["description"] = project_description or ""
    return encode(sections, title, placeholders_for(category))


class MigrationSweep:
    def __init__(self, store: DocumentStore, matcher: LegacyMatcher | None = None) -> None:
        self.store = store
        self.matcher = matcher or LegacyMatcher()

    async def run(
        self,
        project_id: UUID,
        user_id: str,
        project_title: str | None = None,
        project_description: str | None = None,
    ) -> MigrationReport:
        report = MigrationReport(project_id=str(project_id))
        if not await self.store.is_available():
            # без БД список состоит из локальных копий; удалять их нельзя
            _log.warning("migration skipped, store unavailable: project_id=%s", project_id)
            report.failed.append("store_unavailable")
            return report

        report.synced = await self.store.sync_pending(project_id)
        docs = await self.store.read(project_id)

        current = []
        for doc in docs:
            if not self.matcher.is_legacy(doc):
                current.append(doc)
                continue
            if await self.store.delete(doc.id):
                report.deleted_legacy.append(doc.id)
            else:
                report.failed.append(doc.id)

        for category in CANONICAL_CATEGORIES:
            await self._settle_category(
                report, category, current, project_id, user_id, project_title, project_description
            )

        report.converged = await self._converged(project_id)
        _log.info(
            "migration done: project_id=%s legacy=%s invalid=%s duplicates=%s created=%s failed=%s converged=%s",
            project_id,
            len(report.deleted_legacy),
            len(report.deleted_invalid),
            len(report.deleted_duplicates),
            len(report.created),
            len(report.failed),
            report.converged,
        )
        return report

    async def _settle_category(
        self,
        report: MigrationReport,
        category: DocumentCategory,
        docs: list[DocumentRecord],
        project_id: UUID,
        user_id: str,
        project_title: str | None,
        project_description: str | None,
    ) -> None:
        candidates = [
            d for d in docs if d.type == category.document_type and d.title == category.canonical_title
        ]
        valid = []
        for doc in candidates:
            if is_valid_canonical(doc, category):
                valid.append(doc)
            elif await self.store.delete(doc.id):
                report.deleted_invalid.append(doc.id)
            else:
                report.failed.append(doc.id)

        if not valid:
            created = await self.store.create(
                DocumentCreate(
                    project_id=project_id,
                    user_id=user_id,
                    title=category.canonical_title,
                    type=category.document_type,
                    content=default_document(category, project_title, project_description),
                    is_auto_generated=True,
                )
            )
            if created is None or created.is_local:
                report.failed.append(category.value)
            else:
                report.created.append(category.value)
            return

        try:
            pick_canonical(valid, category)
        except DuplicateCanonicalDocument as e:
            _log.info("duplicate category documents: project_id=%s %s", project_id, e)
            for doc_id in e.extra:
                if await self.store.delete(doc_id):
                    report.deleted_duplicates.append(doc_id)
                else:
                    report.failed.append(doc_id)

    async def _converged(self, project_id: UUID) -> bool:
        docs = await self.store.read(project_id)
        if any(self.matcher.is_legacy(d) for d in docs):
            return False
        for category in CANONICAL_CATEGORIES:
            found = [
                d
                for d in docs
                if d.type == category.document_type
                and d.title == category.canonical_title
                and is_valid_canonical(d, category)
            ]
            if len(found) != 1:
                _log.info(
                    "category not converged: project_id=%s category=%s count=%s",
                    project_id,
                    category.value,
                    len(found),
                )
                return False
        return True
