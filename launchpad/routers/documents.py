"""Документы проекта: CRUD, загрузка файлов, разделы, сводный вид, чистка при открытии проекта."""
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import Response

from launchpad.schemas import (
    CombinedViewResponse,
    DocumentCreate,
    DocumentCreateBody,
    DocumentRecord,
    DocumentUpdate,
    MigrationReport,
    MigrationRequest,
    SectionResponse,
    SectionSaveBody,
)
from launchpad.services.document_store import DocumentStore
from launchpad.services.errors import clear_last_failure, failure_detail
from launchpad.services.migration import MigrationSweep
from launchpad.services.section_sync import SectionSynchronizer, section_text
from launchpad.services.sections import parse_category, resolve_section

router = APIRouter(prefix="/api/v1/projects", tags=["documents"])

MAX_UPLOAD_BYTES = 20 * 1024 * 1024


async def get_document_store(request: Request) -> DocumentStore:
    # код сбоя из прошлого запроса не должен попасть в ответ
    clear_last_failure()
    return request.app.state.document_store


def get_user_id(x_user_id: str | None = Header(None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    return x_user_id.strip()


async def _project_document(store: DocumentStore, project_id: UUID, document_id: str) -> DocumentRecord:
    doc = await store.get(document_id)
    if doc is None or doc.project_id != str(project_id):
        raise HTTPException(status_code=404, detail="document not found")
    return doc


@router.get("/{project_id:uuid}/documents", response_model=list[DocumentRecord])
async def list_documents(
    project_id: UUID,
    store: DocumentStore = Depends(get_document_store),
    user_id: str = Depends(get_user_id),
):
    return await store.read(project_id)


@router.post("/{project_id:uuid}/documents", response_model=DocumentRecord, status_code=201)
async def create_document(
    project_id: UUID,
    body: DocumentCreateBody,
    store: DocumentStore = Depends(get_document_store),
    user_id: str = Depends(get_user_id),
):
    doc = await store.create(DocumentCreate(project_id=project_id, user_id=user_id, **body.model_dump()))
    if doc is None:
        raise HTTPException(status_code=503, detail=failure_detail("Failed to create document"))
    return doc


@router.post("/{project_id:uuid}/documents/upload", response_model=DocumentRecord, status_code=201)
async def upload_document(
    project_id: UUID,
    file: UploadFile = File(...),
    title: str | None = Form(None),
    store: DocumentStore = Depends(get_document_store),
    user_id: str = Depends(get_user_id),
):
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="empty file")
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="file too large")
    doc = await store.upload(
        project_id,
        user_id,
        file.filename or "file",
        file.content_type or "application/octet-stream",
        data,
        title=title,
    )
    if doc is None:
        raise HTTPException(status_code=503, detail=failure_detail("Failed to upload document"))
    return doc


@router.get("/{project_id:uuid}/documents/{document_id}", response_model=DocumentRecord)
async def get_document(
    project_id: UUID,
    document_id: str,
    store: DocumentStore = Depends(get_document_store),
    user_id: str = Depends(get_user_id),
):
    return await _project_document(store, project_id, document_id)


@router.patch("/{project_id:uuid}/documents/{document_id}", response_model=DocumentRecord)
async def update_document(
    project_id: UUID,
    document_id: str,
    body: DocumentUpdate,
    store: DocumentStore = Depends(get_document_store),
    user_id: str = Depends(get_user_id),
):
    current = await _project_document(store, project_id, document_id)
    doc = await store.update(document_id, body, local_hint=current)
    if doc is None:
        raise HTTPException(status_code=503, detail=failure_detail("Failed to save document"))
    return doc


@router.delete("/{project_id:uuid}/documents/{document_id}", status_code=204)
async def delete_document(
    project_id: UUID,
    document_id: str,
    store: DocumentStore = Depends(get_document_store),
    user_id: str = Depends(get_user_id),
):
    await _project_document(store, project_id, document_id)
    if not await store.delete(document_id):
        raise HTTPException(status_code=503, detail=failure_detail("Failed to delete document"))
    return Response(status_code=204)


@router.put("/{project_id:uuid}/sections/{section_key}", response_model=SectionResponse)
async def save_section(
    project_id: UUID,
    section_key: str,
    body: SectionSaveBody,
    store: DocumentStore = Depends(get_document_store),
    user_id: str = Depends(get_user_id),
):
    spec = resolve_section(section_key)
    doc = await SectionSynchronizer(store).save_section(project_id, user_id, section_key, body.content)
    if doc is None:
        raise HTTPException(status_code=503, detail=failure_detail("Failed to save section"))
    return SectionResponse(
        section_key=spec.key,
        title=spec.title,
        category=spec.category.value,
        content=section_text(doc, spec.key),
        document=doc,
    )


@router.get("/{project_id:uuid}/sections/{section_key}", response_model=SectionResponse)
async def get_section(
    project_id: UUID,
    section_key: str,
    store: DocumentStore = Depends(get_document_store),
    user_id: str = Depends(get_user_id),
):
    spec = resolve_section(section_key)
    doc = await SectionSynchronizer(store).get_section(project_id, section_key)
    if doc is None:
        raise HTTPException(status_code=404, detail="section not found")
    return SectionResponse(
        section_key=spec.key,
        title=spec.title,
        category=spec.category.value,
        content=section_text(doc, spec.key),
        document=doc,
    )


@router.get("/{project_id:uuid}/categories/{category}/combined", response_model=CombinedViewResponse)
async def get_combined_view(
    project_id: UUID,
    category: str,
    store: DocumentStore = Depends(get_document_store),
    user_id: str = Depends(get_user_id),
):
    try:
        parsed = parse_category(category)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    content = await SectionSynchronizer(store).combined_view(project_id, parsed)
    return CombinedViewResponse(category=parsed.value, content=content)


@router.post("/{project_id:uuid}/migrate", response_model=MigrationReport)
async def migrate_project(
    project_id: UUID,
    body: MigrationRequest | None = None,
    store: DocumentStore = Depends(get_document_store),
    user_id: str = Depends(get_user_id),
):
    """Вызывается при открытии проекта; всегда 200, итог в отчёте."""
    body = body or MigrationRequest()
    return await MigrationSweep(store).run(
        project_id,
        user_id,
        project_title=body.project_title,
        project_description=body.project_description,
    )
