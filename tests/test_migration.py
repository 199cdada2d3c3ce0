"""Tests for the migration sweep: legacy cleanup, one valid document per category, idempotence."""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from launchpad.models import LEGACY_SCHEMA_VERSION, Document
from launchpad.schemas import DocumentCreate, DocumentRecord
from launchpad.services.errors import DuplicateCanonicalDocument
from launchpad.services.markers import encode, find_section
from launchpad.services.migration import LegacyMatcher, MigrationSweep, default_document, pick_canonical
from launchpad.services.section_sync import document_heading
from launchpad.services.sections import CANONICAL_CATEGORIES, DocumentCategory, section_keys


async def _add_legacy_row(session_maker, project_id, type_, title, content="old"):
    now = datetime.now(timezone.utc)
    row = Document(
        id=uuid.uuid4(),
        project_id=project_id,
        user_id="user1",
        title=title,
        type=type_,
        content=content,
        schema_version=LEGACY_SCHEMA_VERSION,
        created_at=now,
        updated_at=now,
    )
    async with session_maker() as session, session.begin():
        session.add(row)
    return str(row.id)


async def _rows(session_maker, project_id) -> list[Document]:
    async with session_maker() as session:
        result = await session.execute(select(Document).where(Document.project_id == project_id))
        return list(result.scalars().all())


def _record(**kw) -> DocumentRecord:
    now = datetime.now(timezone.utc)
    values = {
        "id": str(uuid.uuid4()),
        "project_id": str(uuid.uuid4()),
        "user_id": "user1",
        "title": "Market Research",
        "type": "market_research",
        "content": "",
        "created_at": now,
        "updated_at": now,
    }
    values.update(kw)
    return DocumentRecord(**values)


def test_legacy_matcher_patterns():
    """LegacyMatcher recognises old types, titles and local_ ids."""
    matcher = LegacyMatcher()
    assert matcher.is_legacy(_record(type="project_goals", title="Goals"))
    assert matcher.is_legacy(_record(title="Document - project"))
    assert matcher.is_legacy(_record(type="project_planning", title="Project Planning", schema_version=1))
    assert matcher.is_legacy(_record(id="local_1700000000000_abc1234"))
    assert not matcher.is_legacy(_record(type="project_overview", title="Project Overview"))
    assert not matcher.is_legacy(_record())


def test_current_documents_are_never_legacy():
    """Documents stamped with the current schema version are never legacy."""
    matcher = LegacyMatcher()
    assert not matcher.is_legacy(_record(type="project_planning", title="Project Planning", schema_version=2))
    assert not matcher.is_legacy(_record(type="project", title="Document - project", schema_version=2))


def test_default_overview_document():
    """Default overview uses project title and description."""
    content = default_document(DocumentCategory.PROJECT_OVERVIEW, "Habit Tracker", "Track daily habits")
    assert document_heading(content) == "Habit Tracker"
    assert find_section(content, "description") == "Track daily habits"
    assert find_section(content, "goals") == "No goals defined yet."
    assert document_heading(default_document(DocumentCategory.PROJECT_OVERVIEW)) == "Project Plan"


@pytest.mark.asyncio
async def test_empty_project_gets_category_documents(store, project_id):
    """Sweep on an empty project creates one document per canonical category."""
    report = await MigrationSweep(store).run(project_id, "user1", "Habit Tracker", "Track daily habits")
    assert sorted(report.created) == sorted(c.value for c in CANONICAL_CATEGORIES)
    assert report.converged is True
    [overview] = await store.find(project_id, "project_overview", "Project Overview")
    assert document_heading(overview.content) == "Habit Tracker"


@pytest.mark.asyncio
async def test_second_run_changes_nothing(store, project_id):
    """Second sweep on a converged project changes nothing."""
    await MigrationSweep(store).run(project_id, "user1")
    report = await MigrationSweep(store).run(project_id, "user1")
    assert report.deleted_legacy == []
    assert report.deleted_invalid == []
    assert report.deleted_duplicates == []
    assert report.created == []
    assert report.changed is False
    assert report.converged is True


@pytest.mark.asyncio
async def test_legacy_documents_removed(store, session_maker, project_id):
    """Sweep deletes legacy rows and keeps current section documents."""
    legacy_ids = [
        await _add_legacy_row(session_maker, project_id, "project_description", "Description"),
        await _add_legacy_row(session_maker, project_id, "project", "Document - project"),
        await _add_legacy_row(
            session_maker,
            project_id,
            "project_planning",
            "Project Planning",
            encode({k: "old plan" for k in section_keys(DocumentCategory.PROJECT_PLANNING)}, "Plan"),
        ),
    ]
    kept = await store.create(
        DocumentCreate(project_id=project_id, user_id="user1", title="Risk Management", type="project_planning",
                       content="Scope creep")
    )

    report = await MigrationSweep(store).run(project_id, "user1")
    assert sorted(report.deleted_legacy) == sorted(legacy_ids)
    remaining = {str(r.id) for r in await _rows(session_maker, project_id)}
    assert not remaining & set(legacy_ids)
    assert kept.id in remaining
    assert report.converged is True


@pytest.mark.asyncio
async def test_newest_duplicate_kept(store, session_maker, project_id):
    """Sweep keeps the newest of duplicate category documents."""
    content = encode({k: "research" for k in section_keys(DocumentCategory.MARKET_RESEARCH)}, "Market Research")
    older = await store.create(
        DocumentCreate(project_id=project_id, user_id="user1", title="Market Research", type="market_research",
                       content=content)
    )
    newer = await store.create(
        DocumentCreate(project_id=project_id, user_id="user1", title="Market Research", type="market_research",
                       content=content)
    )
    async with session_maker() as session, session.begin():
        row = await session.get(Document, uuid.UUID(newer.id))
        row.updated_at = datetime.now(timezone.utc) + timedelta(minutes=5)

    report = await MigrationSweep(store).run(project_id, "user1")
    assert report.deleted_duplicates == [older.id]
    assert "market_research" not in report.created
    docs = await store.find(project_id, "market_research", "Market Research")
    assert [d.id for d in docs] == [newer.id]


@pytest.mark.asyncio
async def test_invalid_document_replaced(store, project_id):
    """Sweep replaces a category document without markers."""
    broken = await store.create(
        DocumentCreate(project_id=project_id, user_id="user1", title="Project Planning", type="project_planning",
                       content="free text without markers")
    )
    report = await MigrationSweep(store).run(project_id, "user1")
    assert report.deleted_invalid == [broken.id]
    assert "project_planning" in report.created
    [plan] = await store.find(project_id, "project_planning", "Project Planning")
    assert find_section(plan.content, "project_planning_risks") == "No risk management provided yet."


@pytest.mark.asyncio
async def test_pending_local_documents_synced_first(broken_store, store, fallback, project_id):
    """Sweep pushes pending local documents before cleaning."""
    await broken_store.create(
        DocumentCreate(project_id=project_id, user_id="user1", title="Market Research", type="market_research",
                       content=encode({"market_research_audience": "Founders", "market_research_trends": "AI"},
                                      "Market Research"))
    )
    report = await MigrationSweep(store).run(project_id, "user1")
    assert report.synced == 1
    assert "market_research" not in report.created
    [doc] = await store.find(project_id, "market_research", "Market Research")
    assert find_section(doc.content, "market_research_audience") == "Founders"


@pytest.mark.asyncio
async def test_sweep_skipped_when_database_unavailable(broken_store, fallback, project_id):
    """Without the database the sweep does nothing and local copies survive."""
    local = await broken_store.create(
        DocumentCreate(project_id=project_id, user_id="user1", title="Notes", type="notes", content="keep me")
    )
    report = await MigrationSweep(broken_store).run(project_id, "user1")
    assert report.failed == ["store_unavailable"]
    assert report.converged is False
    assert (await broken_store.get(local.id)).content == "keep me"


def test_pick_canonical_reports_duplicates():
    """pick_canonical() returns a single document; with several it raises listing all but the newest."""
    now = datetime.now(timezone.utc)
    older = _record(updated_at=now - timedelta(hours=1))
    newer = _record(updated_at=now)
    assert pick_canonical([older], DocumentCategory.MARKET_RESEARCH) is older
    with pytest.raises(DuplicateCanonicalDocument) as exc:
        pick_canonical([older, newer], DocumentCategory.MARKET_RESEARCH)
    assert exc.value.keep == newer.id
    assert exc.value.extra == [older.id]
