"""Tests for SectionSynchronizer: save / get sections, category document, combined view."""
import pytest

from launchpad.schemas import DocumentCreate
from launchpad.services.errors import UnknownSection
from launchpad.services.markers import find_section
from launchpad.services.migration import MigrationSweep
from launchpad.services.section_sync import SectionSynchronizer, document_heading, section_text
from launchpad.services.sections import DocumentCategory


@pytest.fixture
def sync(store):
    return SectionSynchronizer(store)


@pytest.mark.asyncio
async def test_save_then_get_section(sync, project_id):
    """save_section() creates the section document, get_section() returns it."""
    saved = await sync.save_section(project_id, "user1", "project_planning_objectives", "Our goal is X")
    assert saved is not None
    doc = await sync.get_section(project_id, "project_planning_objectives")
    assert doc.id == saved.id
    assert doc.content == "Our goal is X"
    assert doc.title == "Objectives & Goals"
    assert doc.type == "project_planning"
    assert doc.is_auto_generated is True


@pytest.mark.asyncio
async def test_second_save_overwrites(sync, store, project_id):
    """Saving a section twice updates the same document."""
    first = await sync.save_section(project_id, "user1", "market_research_trends", "AI everywhere")
    second = await sync.save_section(project_id, "user1", "market_research_trends", "AI slows down")
    assert second.id == first.id
    docs = await store.find(project_id, "market_research", "Market Trends")
    assert [d.content for d in docs] == ["AI slows down"]


@pytest.mark.asyncio
async def test_save_rebuilds_category_document(sync, store, project_id):
    """Each save rewrites the marker-encoded category document."""
    await sync.save_section(project_id, "user1", "market_research_audience", "Solo founders")
    await sync.save_section(project_id, "user1", "market_research_trends", "No-code tools")

    [canonical] = await store.find(project_id, "market_research", "Market Research")
    assert find_section(canonical.content, "market_research_audience") == "Solo founders"
    assert find_section(canonical.content, "market_research_trends") == "No-code tools"
    assert find_section(canonical.content, "market_research_demand") == "No demand & growth provided yet."

    contents = await sync.section_contents(project_id, DocumentCategory.MARKET_RESEARCH)
    assert contents["market_research_trends"] == "No-code tools"
    assert contents["market_research_regulatory"] == "No legal & regulatory provided yet."


@pytest.mark.asyncio
async def test_overview_heading_is_kept(sync, store, project_id):
    """Saving an overview section keeps the project heading and other sections."""
    await store.create(
        DocumentCreate(
            project_id=project_id,
            user_id="user1",
            title="Project Overview",
            type="project_overview",
            content="# Habit Tracker\n\n<!-- SECTION:description -->\nTrack habits\n<!-- END:description -->",
        )
    )
    await sync.save_section(project_id, "user1", "goals", "Ship v1")

    [canonical] = await store.find(project_id, "project_overview", "Project Overview")
    assert document_heading(canonical.content) == "Habit Tracker"
    assert find_section(canonical.content, "description") == "Track habits"
    assert find_section(canonical.content, "goals") == "Ship v1"
    assert find_section(canonical.content, "features") == "No key features defined yet."


@pytest.mark.asyncio
async def test_overview_section_keeps_single_overview_document(sync, store, project_id):
    """Overview sections are written into the one overview document, no extra documents appear."""
    await MigrationSweep(store).run(project_id, "user1", "Habit Tracker")
    saved = await sync.save_section(project_id, "user1", "goals", "Ship v1")
    assert saved.title == "Project Overview"

    docs = await store.find(project_id, "project_overview")
    assert len(docs) == 1
    doc = await sync.get_section(project_id, "goals")
    assert doc.id == docs[0].id
    assert section_text(doc, "goals") == "Ship v1"
    assert document_heading(doc.content) == "Habit Tracker"


@pytest.mark.asyncio
async def test_unknown_section_is_raised(sync, project_id):
    """Unknown keys raise UnknownSection on save and on get."""
    with pytest.raises(UnknownSection):
        await sync.save_section(project_id, "user1", "market_research_budget", "x")
    with pytest.raises(UnknownSection):
        await sync.get_section(project_id, "market_research_budget")


@pytest.mark.asyncio
async def test_get_missing_section(sync, project_id):
    """get_section() returns None when nothing is stored."""
    assert await sync.get_section(project_id, "goals") is None


@pytest.mark.asyncio
async def test_get_section_from_old_type_tag(sync, store, project_id):
    """Documents tagged with the section key as type are still found."""
    old = await store.create(
        DocumentCreate(project_id=project_id, user_id="user1", title="Goals doc", type="goals", content="Grow")
    )
    doc = await sync.get_section(project_id, "goals")
    assert doc.id == old.id


@pytest.mark.asyncio
async def test_sections_by_category_excludes_category_document(sync, project_id):
    """get_sections_by_category() lists section documents without the category document."""
    await sync.save_section(project_id, "user1", "project_planning_risks", "Scope creep")
    docs = await sync.get_sections_by_category(project_id, DocumentCategory.PROJECT_PLANNING)
    assert [d.title for d in docs] == ["Risk Management"]


@pytest.mark.asyncio
async def test_sections_by_category_old_type_prefix(sync, store, project_id):
    """Without typed documents the category prefix of the type is matched."""
    await store.create(
        DocumentCreate(
            project_id=project_id,
            user_id="user1",
            title="Tech Stack",
            type="design_development_tech_stack",
            content="FastAPI",
        )
    )
    docs = await sync.get_sections_by_category(project_id, DocumentCategory.DESIGN_DEVELOPMENT)
    assert [d.type for d in docs] == ["design_development_tech_stack"]


@pytest.mark.asyncio
async def test_combined_view(sync, project_id):
    """combined_view() renders sections in registry order with 'Not yet generated' gaps."""
    await sync.save_section(project_id, "user1", "design_development_tech_stack", "FastAPI + Postgres")
    text = await sync.combined_view(project_id, DocumentCategory.DESIGN_DEVELOPMENT)
    assert text.startswith("# Design & Development\n\n")
    assert "## Tech Stack\nFastAPI + Postgres" in text
    assert "## Wireframes\nNot yet generated" in text
    assert text.index("## Wireframes") < text.index("## Tech Stack")


@pytest.mark.asyncio
async def test_save_without_database_keeps_section_locally(broken_store, fallback, project_id):
    """Without the database an overview section lands in a local overview document."""
    sync = SectionSynchronizer(broken_store)
    saved = await sync.save_section(project_id, "user1", "goals", "Offline goal")
    assert saved is not None
    assert saved.is_local
    assert saved.title == "Project Overview"
    entry = fallback.get_entry(f"document_{project_id}_project_overview")
    assert find_section(entry.content, "goals") == "Offline goal"
    assert entry.id == saved.id


@pytest.mark.asyncio
async def test_combined_view_hides_stored_placeholders(sync, project_id):
    """Placeholders stored in the category document show as 'Not yet generated'."""
    await sync.save_section(project_id, "user1", "market_research_audience", "Indie hackers")
    text = await sync.combined_view(project_id, DocumentCategory.MARKET_RESEARCH)
    assert "## Audience Analysis\nIndie hackers" in text
    assert "## Market Trends\nNot yet generated" in text
    assert "provided yet" not in text
