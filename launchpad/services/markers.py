"""Разделы документа в одной строке markdown с маркерами.

    # {title}

    <!-- SECTION:key -->
    content
    <!-- END:key -->

Экранирования нет: если текст раздела сам содержит маркер, разбор такого документа
не определён."""
from collections.abc import Iterable, Mapping

from launchpad.services.errors import MarkerMismatch

NOT_YET_GENERATED = "Not yet generated"


def section_start(key: str) -> str:
    return f"<!-- SECTION:{key} -->"


def section_end(key: str) -> str:
    return f"<!-- END:{key} -->"


def default_placeholder(key: str) -> str:
    return f"No {key.replace('_', ' ')} provided yet."


def _pairs(sections: Mapping[str, str] | Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    if isinstance(sections, Mapping):
        return list(sections.items())
    return list(sections)


def encode(
    sections: Mapping[str, str] | Iterable[tuple[str, str]],
    document_title: str,
    placeholders: Mapping[str, str] | None = None,
) -> str:
    """Собирает документ: заголовок и блоки разделов в заданном порядке.

    Пустой раздел заменяется заглушкой из placeholders (или default_placeholder).
    """
    placeholders = placeholders or {}
    blocks = []
    for key, content in _pairs(sections):
        text = (content or "").strip()
        if not text:
            text = placeholders.get(key) or default_placeholder(key)
        blocks.append(f"{section_start(key)}\n{text}\n{section_end(key)}")
    return f"# {document_title}\n\n" + "\n\n".join(blocks)


def find_section(blob: str | None, key: str) -> str | None:
    """Содержимое раздела или None, если маркеров нет, они перепутаны или раздел пуст."""
    if not blob:
        return None
    start_marker = section_start(key)
    start = blob.find(start_marker)
    if start == -1:
        return None
    body_start = start + len(start_marker)
    end = blob.find(section_end(key), body_start)
    if end == -1:
        return None
    return blob[body_start:end].strip() or None


def decode(
    blob: str | None,
    expected_keys: Iterable[str],
    placeholders: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Разделы по ключам; отсутствующие получают заглушку. Ключи разбираются независимо."""
    placeholders = placeholders or {}
    result = {}
    for key in expected_keys:
        content = find_section(blob, key)
        if content is None:
            content = placeholders.get(key) or default_placeholder(key)
        result[key] = content
    return result


def missing_sections(blob: str | None, expected_keys: Iterable[str]) -> list[str]:
    return [key for key in expected_keys if find_section(blob, key) is None]


def count_present(blob: str | None, expected_keys: Iterable[str]) -> int:
    return sum(1 for key in expected_keys if find_section(blob, key) is not None)


def check_sections(blob: str | None, expected_keys: Iterable[str], minimum: int | None = None) -> None:
    """Raise MarkerMismatch unless at least `minimum` sections decode (all of them by default)."""
    keys = list(expected_keys)
    required = len(keys) if minimum is None else minimum
    if count_present(blob, keys) < required:
        raise MarkerMismatch(missing_sections(blob, keys))


def render_combined(document_title: str, sections: Iterable[tuple[str, str | None]]) -> str:
    """Старый сводный вид: '## Заголовок' и текст раздела, без маркеров."""
    parts = [f"# {document_title}"]
    for title, content in sections:
        text = (content or "").strip() or NOT_YET_GENERATED
        parts.append(f"## {title}\n{text}")
    return "\n\n".join(parts)
