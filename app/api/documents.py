"""API endpoints for complaint documents."""

import asyncio
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from app.api.complaints import require_complaint_access
from app.core.auth import AuthContext, require_auth
from app.core.file_text import build_processed_data, extract_text_from_upload
from app.core.logging import get_logger
from app.core.rate_limiter import rate_limit
from app.core.schemas_complaints import DocumentType
from app.core.schemas_jobs import JobType
from app.db import audit_log
from app.db import documents as documents_db
from app.db.job_queue import enqueue

logger = get_logger(__name__)

router = APIRouter()

OCR_JOB_PRIORITY = 7


def _require_document(document_id: UUID, auth: AuthContext) -> dict:
    document = documents_db.get_document(document_id)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")
    require_complaint_access(document["complaint_id"], auth)
    return document


@router.post(
    "/upload",
    status_code=201,
    dependencies=[Depends(rate_limit("documents.upload"))],
)
async def upload_document(
    complaint_id: UUID = Form(...),
    document_type: DocumentType = Form(...),
    file: UploadFile = File(...),
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """
    Store a document, extract and anonymise its text and record it.

    Documents with scanned pages get a document_ocr job.

    Raises:
        HTTPException 400: If the file is too large, empty or unsupported
        HTTPException 404: If the complaint is not found
    """
    try:
        complaint = require_complaint_access(complaint_id, auth)

        raw_bytes = await file.read()
        filename = file.filename or "upload"
        extracted = await asyncio.to_thread(
            extract_text_from_upload, filename, file.content_type, raw_bytes
        )

        storage_path = documents_db.build_storage_path(complaint_id, document_type.value, filename)
        documents_db.upload_file(storage_path, raw_bytes, file.content_type)

        try:
            document = documents_db.create_document(
                complaint_id=complaint_id,
                document_type=document_type.value,
                filename=filename,
                file_path=storage_path,
                processed_data=build_processed_data(extracted),
                uploaded_by=auth.user_id,
            )
        except Exception:
            documents_db.remove_file(storage_path)
            raise

        job = None
        if extracted.needs_ocr:
            try:
                job = enqueue(
                    JobType.DOCUMENT_OCR.value,
                    {"document_id": document["id"]},
                    priority=OCR_JOB_PRIORITY,
                )
                logger.info(
                    f"Queued OCR for {len(extracted.ocr_pages)} pages of {filename}",
                    extra={"document_id": document["id"]},
                )
            except Exception:
                logger.exception(
                    f"Failed to queue OCR for {filename}", extra={"document_id": document["id"]}
                )

    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception(f"Failed to upload document for complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to upload document")

    audit_log.data_create(
        auth.user_id,
        complaint.get("organization_id"),
        "document",
        document["id"],
        {"complaint_id": str(complaint_id), "filename": filename, "document_type": document_type.value},
    )
    return {"document": document, "ocr_job_id": job["id"] if job else None}


@router.get("/complaint/{complaint_id}")
async def list_documents(complaint_id: UUID, auth: AuthContext = Depends(require_auth)) -> dict:
    try:
        require_complaint_access(complaint_id, auth)
        documents = documents_db.list_documents(complaint_id)
        return {"documents": documents, "count": len(documents)}

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to list documents for complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to list documents")


@router.get("/{document_id}/url")
async def get_signed_url(document_id: UUID, auth: AuthContext = Depends(require_auth)) -> dict:
    """Signed download URL valid for one hour."""
    try:
        document = _require_document(document_id, auth)
        url = documents_db.create_signed_url(document["file_path"])
        return {"url": url, "expires_in": documents_db.SIGNED_URL_EXPIRY_SECONDS}

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to sign URL for document {document_id}")
        raise HTTPException(status_code=500, detail="Failed to create download URL")


@router.post("/{document_id}/ocr", status_code=202)
async def retry_ocr(document_id: UUID, auth: AuthContext = Depends(require_auth)) -> dict:
    """Queue text re-extraction for a document."""
    try:
        _require_document(document_id, auth)
        job = enqueue(
            JobType.DOCUMENT_OCR.value,
            {"document_id": str(document_id)},
            priority=OCR_JOB_PRIORITY,
        )
        return {"job_id": job["id"], "status": job["status"]}

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to queue OCR for document {document_id}")
        raise HTTPException(status_code=500, detail="Failed to queue OCR")


@router.delete("/{document_id}", status_code=204)
async def delete_document(document_id: UUID, auth: AuthContext = Depends(require_auth)) -> None:
    try:
        document = _require_document(document_id, auth)
        documents_db.delete_document(document_id)

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to delete document {document_id}")
        raise HTTPException(status_code=500, detail="Failed to delete document")

    audit_log.data_delete(auth.user_id, auth.organization_id, "document", document["id"])
