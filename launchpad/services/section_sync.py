"""Сохранение и чтение отдельных разделов документов проекта.

Раздел хранится как свой документ (type = тип категории, title = заголовок раздела),
кроме разделов обзора проекта: они есть только в документе обзора.
Для канонических категорий после каждого сохранения пересобирается
структурированный документ категории (один на проект, с маркерами)."""
import logging
from uuid import UUID

from launchpad.schemas import DocumentCreate, DocumentRecord, DocumentUpdate
from launchpad.services.document_store import DocumentStore
from launchpad.services.errors import log_failure
from launchpad.services.markers import decode, encode, find_section, render_combined
from launchpad.services.sections import (
    DocumentCategory,
    placeholders_for,
    resolve_section,
    section_keys,
    sections_for,
)

_log = logging.getLogger(__name__)

COMPONENT = "SectionSynchronizer"


def document_heading(blob: str | None) -> str | None:
    """Текст заголовка '# ...' из первой строки документа."""
    if not blob:
        return None
    first_line = blob.lstrip().split("\n", 1)[0].strip()
    if first_line.startswith("# "):
        return first_line[2:].strip() or None
    return None


def section_text(doc: DocumentRecord, key: str) -> str:
    """Текст раздела: из маркеров, если документ старого формата их содержит, иначе всё содержимое."""
    return find_section(doc.content, key) or doc.content.strip()


def newest(docs: list[DocumentRecord], what: str) -> DocumentRecord | None:
    if not docs:
        return None
    chosen = max(docs, key=lambda d: d.updated_at)
    if len(docs) > 1:
        _log.info("duplicate documents: %s count=%s using=%s", what, len(docs), chosen.id)
    return chosen


class SectionSynchronizer:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def save_section(
        self,
        project_id: UUID,
        user_id: str,
        section_key: str,
        content: str,
    ) -> DocumentRecord | None:
        """Создаёт или перезаписывает документ раздела. UnknownSection пробрасывается.

        Разделы обзора проекта пишутся только в документ обзора, он и возвращается."""
        spec = resolve_section(section_key)
        if not spec.category.has_section_documents:
            return await self.refresh_category_document(project_id, user_id, spec.category, {section_key: content})
        try:
            existing = newest(
                await self.store.find(project_id, spec.document_type, spec.title),
                f"section {section_key} of project {project_id}",
            )
            if existing is not None:
                saved = await self.store.update(existing.id, DocumentUpdate(content=content), local_hint=existing)
            else:
                saved = await self.store.create(
                    DocumentCreate(
                        project_id=project_id,
                        user_id=user_id,
                        title=spec.title,
                        type=spec.document_type,
                        content=content,
                        is_auto_generated=True,
                    )
                )
        except Exception as e:
            log_failure(COMPONENT, "save_section", e, project_id=project_id, section=section_key)
            return None
        if saved is not None and spec.category.is_canonical:
            await self.refresh_category_document(project_id, user_id, spec.category, {section_key: content})
        return saved

    async def refresh_category_document(
        self,
        project_id: UUID,
        user_id: str,
        category: DocumentCategory,
        overrides: dict[str, str] | None = None,
    ) -> DocumentRecord | None:
        """Пересобирает документ категории с маркерами, подставляя overrides поверх текущих разделов."""
        try:
            canonical = newest(
                await self.store.find(project_id, category.document_type, category.canonical_title),
                f"{category.value} document of project {project_id}",
            )
            current = canonical.content if canonical is not None else None
            sections = {key: find_section(current, key) or "" for key in section_keys(category)}
            sections.update(overrides or {})
            content = encode(
                sections,
                document_heading(current) or category.canonical_title,
                placeholders_for(category),
            )
            if canonical is not None:
                return await self.store.update(canonical.id, DocumentUpdate(content=content), local_hint=canonical)
            return await self.store.create(
                DocumentCreate(
                    project_id=project_id,
                    user_id=user_id,
                    title=category.canonical_title,
                    type=category.document_type,
                    content=content,
                    is_auto_generated=True,
                )
            )
        except Exception as e:
            log_failure(COMPONENT, "refresh_category_document", e, project_id=project_id, category=category.value)
            return None

    async def get_section(self, project_id: UUID, section_key: str) -> DocumentRecord | None:
        spec = resolve_section(section_key)
        if spec.category.has_section_documents:
            docs = await self.store.find(project_id, spec.document_type, spec.title)
        else:
            docs = [
                d
                for d in await self.store.find(project_id, spec.document_type, spec.category.canonical_title)
                if find_section(d.content, section_key) is not None
            ]
        if docs:
            return docs[0]
        # документы до разделения title/type хранили раздел с type = ключ раздела
        legacy = await self.store.find(project_id, section_key)
        if legacy:
            return legacy[0]
        _log.info("no document for section: project_id=%s section=%s", project_id, section_key)
        return None

    async def get_sections_by_category(self, project_id: UUID, category: DocumentCategory) -> list[DocumentRecord]:
        docs = [
            d
            for d in await self.store.find(project_id, category.document_type)
            if d.title != category.canonical_title
        ]
        if docs:
            return docs
        return await self.store.find_by_type_prefix(project_id, f"{category.value}_")

    async def section_contents(self, project_id: UUID, category: DocumentCategory) -> dict[str, str]:
        """Разделы документа категории; отсутствующие заменены заглушками."""
        docs = await self.store.find(project_id, category.document_type, category.canonical_title)
        canonical = newest(docs, f"{category.value} document of project {project_id}")
        return decode(canonical.content if canonical else None, section_keys(category), placeholders_for(category))

    async def combined_view(self, project_id: UUID, category: DocumentCategory) -> str:
        """Старый сводный вид категории: '## Заголовок' на раздел, 'Not yet generated' для пустых."""
        by_title: dict[str, DocumentRecord] = {}
        for doc in await self.get_sections_by_category(project_id, category):
            by_title.setdefault(doc.title, doc)
        canonical = newest(
            await self.store.find(project_id, category.document_type, category.canonical_title),
            f"{category.value} document of project {project_id}",
        )
        parts = []
        for spec in sections_for(category):
            doc = by_title.get(spec.title)
            if doc is not None:
                text = section_text(doc, spec.key)
            else:
                text = find_section(canonical.content, spec.key) if canonical else None
            if text == spec.placeholder:
                text = None
            parts.append((spec.title, text))
        return render_combined(category.canonical_title, parts)
