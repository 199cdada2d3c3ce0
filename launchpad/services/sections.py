"""Реестр разделов: ключ раздела -> категория документа, заголовок, тип документа.

Набор ключей закрыт. Ключи и их порядок внутри категории нельзя менять:
по ним строятся маркеры <!-- SECTION:key --> в уже сохранённых документах."""
from dataclasses import dataclass
from enum import Enum

from launchpad.services.errors import UnknownSection


class DocumentCategory(str, Enum):
    PROJECT_OVERVIEW = "project_overview"
    MARKET_RESEARCH = "market_research"
    PROJECT_PLANNING = "project_planning"
    DESIGN_DEVELOPMENT = "design_development"
    OTHER = "other"

    @property
    def label(self) -> str:
        return _CATEGORY_LABELS[self]

    @property
    def document_type(self) -> str:
        return self.value

    @property
    def canonical_title(self) -> str:
        """Title of the single structured document that holds every section of the category."""
        return _CATEGORY_LABELS[self]

    @property
    def is_canonical(self) -> bool:
        return self in CANONICAL_CATEGORIES

    @property
    def has_section_documents(self) -> bool:
        """Overview sections live only inside the overview document."""
        return self is not DocumentCategory.PROJECT_OVERVIEW


_CATEGORY_LABELS = {
    DocumentCategory.PROJECT_OVERVIEW: "Project Overview",
    DocumentCategory.MARKET_RESEARCH: "Market Research",
    DocumentCategory.PROJECT_PLANNING: "Project Planning",
    DocumentCategory.DESIGN_DEVELOPMENT: "Design & Development",
    DocumentCategory.OTHER: "Other",
}

# Одна структурированная запись на проект для каждой из этих категорий
CANONICAL_CATEGORIES = (
    DocumentCategory.PROJECT_OVERVIEW,
    DocumentCategory.MARKET_RESEARCH,
    DocumentCategory.PROJECT_PLANNING,
)


@dataclass(frozen=True)
class SectionSpec:
    key: str
    category: DocumentCategory
    title: str
    placeholder: str

    @property
    def document_type(self) -> str:
        # unregistered keys keep their own type tag, as documents written before the registry did
        if self.category is DocumentCategory.OTHER:
            return self.key
        return self.category.document_type


def _spec(key: str, category: DocumentCategory, title: str, placeholder: str | None = None) -> SectionSpec:
    return SectionSpec(
        key=key,
        category=category,
        title=title,
        placeholder=placeholder or f"No {title.lower()} provided yet.",
    )


_OVERVIEW = DocumentCategory.PROJECT_OVERVIEW
_RESEARCH = DocumentCategory.MARKET_RESEARCH
_PLANNING = DocumentCategory.PROJECT_PLANNING
_DESIGN = DocumentCategory.DESIGN_DEVELOPMENT

_SECTIONS: tuple[SectionSpec, ...] = (
    _spec("description", _OVERVIEW, "Description", "No description provided yet."),
    _spec("goals", _OVERVIEW, "Goals", "No goals defined yet."),
    _spec("features", _OVERVIEW, "Key Features", "No key features defined yet."),
    _spec("considerations", _OVERVIEW, "Considerations", "No additional considerations defined yet."),
    _spec("market_research_audience", _RESEARCH, "Audience Analysis"),
    _spec("market_research_trends", _RESEARCH, "Market Trends"),
    _spec("market_research_competitive", _RESEARCH, "Competitive Analysis"),
    _spec("market_research_demand", _RESEARCH, "Demand & Growth"),
    _spec("market_research_regulatory", _RESEARCH, "Legal & Regulatory"),
    _spec("project_planning_objectives", _PLANNING, "Objectives & Goals"),
    _spec("project_planning_tasks", _PLANNING, "Tasks & Timeline"),
    _spec("project_planning_resources", _PLANNING, "Resource Allocation"),
    _spec("project_planning_risks", _PLANNING, "Risk Management"),
    _spec("project_planning_stakeholders", _PLANNING, "Stakeholder Analysis"),
    _spec("project_planning_metrics", _PLANNING, "Metrics & Success Criteria"),
    _spec("design_development_wireframes", _DESIGN, "Wireframes"),
    _spec("design_development_tech_stack", _DESIGN, "Tech Stack"),
    _spec("design_development_user_journeys", _DESIGN, "User Journeys"),
    _spec("design_development_documentation", _DESIGN, "Documentation"),
)

SECTIONS: dict[str, SectionSpec] = {s.key: s for s in _SECTIONS}

# Заголовки документов по типу (в т.ч. для копий из локального хранилища)
_DOCUMENT_TITLES = {
    "project_overview": "Project Overview",
    "market_research": "Market Research",
    "project_planning": "Project Planning",
    "design_development": "Design & Development",
    "chat_transcript": "Chat Transcript",
    "uploaded": "Uploaded Document",
}


def title_case_key(key: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in key.split("_"))


def resolve_section(key: str, strict: bool = True) -> SectionSpec:
    """Registry entry for a section key.

    Unknown keys raise UnknownSection. With strict=False a best-effort entry is returned
    instead: Title Case words, category OTHER, the key itself as document type.
    """
    spec = SECTIONS.get(key)
    if spec is not None:
        return spec
    if strict:
        raise UnknownSection(key)
    return SectionSpec(
        key=key,
        category=DocumentCategory.OTHER,
        title=title_case_key(key),
        placeholder=f"No {key.replace('_', ' ')} provided yet.",
    )


def sections_for(category: DocumentCategory) -> tuple[SectionSpec, ...]:
    return tuple(s for s in _SECTIONS if s.category is category)


def section_keys(category: DocumentCategory) -> list[str]:
    return [s.key for s in sections_for(category)]


def placeholders_for(category: DocumentCategory) -> dict[str, str]:
    return {s.key: s.placeholder for s in sections_for(category)}


def category_for_type(document_type: str) -> DocumentCategory | None:
    try:
        return DocumentCategory(document_type)
    except ValueError:
        return None


def parse_category(value: str) -> DocumentCategory:
    """Категория по значению ('market_research') или подписи ('Market Research')."""
    category = category_for_type(value)
    if category is not None:
        return category
    for c, label in _CATEGORY_LABELS.items():
        if label.lower() == value.strip().lower():
            return c
    raise ValueError(f"unknown category: {value!r}")


def document_title_for_type(document_type: str) -> str:
    return _DOCUMENT_TITLES.get(document_type) or f"Document - {document_type.replace('_', ' ', 1)}"
