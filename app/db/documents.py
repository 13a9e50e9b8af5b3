"""Complaint document rows and their storage objects."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from app.core.config import get_settings
from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

SIGNED_URL_EXPIRY_SECONDS = 3600


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def build_storage_path(complaint_id: UUID, document_type: str, filename: str) -> str:
    """{complaint_id}/{document_type}/{timestamp_ms}_{filename}"""
    timestamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"{complaint_id}/{document_type}/{timestamp}_{filename}"


def upload_file(storage_path: str, file_bytes: bytes, content_type: str | None) -> str:
    """Upload bytes to the documents bucket and return the path."""
    supabase = get_supabase()
    bucket = get_settings().DOCUMENTS_BUCKET

    try:
        supabase.storage.from_(bucket).upload(
            path=storage_path,
            file=file_bytes,
            file_options={"content-type": content_type or "application/octet-stream"},
        )
        return storage_path

    except Exception as e:
        logger.error(f"Failed to upload {storage_path} to storage: {e}")
        raise


def remove_file(storage_path: str) -> None:
    """Remove a storage object, logging instead of raising on failure."""
    supabase = get_supabase()

    try:
        supabase.storage.from_(get_settings().DOCUMENTS_BUCKET).remove([storage_path])
    except Exception as e:
        logger.warning(f"Failed to remove storage object {storage_path}: {e}")


def download_file(storage_path: str) -> bytes:
    supabase = get_supabase()
    bucket = get_settings().DOCUMENTS_BUCKET

    try:
        data = supabase.storage.from_(bucket).download(storage_path)
        if not data:
            raise ValueError(f"Empty download for {storage_path}")
        return data

    except Exception as e:
        logger.error(f"Failed to download {storage_path}: {e}")
        raise


def create_signed_url(storage_path: str, expires_in: int = SIGNED_URL_EXPIRY_SECONDS) -> str:
    """Signed download URL for a stored document (default 1 hour)."""
    supabase = get_supabase()
    bucket = get_settings().DOCUMENTS_BUCKET

    try:
        signed = supabase.storage.from_(bucket).create_signed_url(storage_path, expires_in)
        url = signed.get("signedURL") or signed.get("signedUrl")
        if not url:
            raise ValueError(f"No signed URL returned for {storage_path}")
        return url

    except Exception as e:
        logger.error(f"Failed to create signed URL for {storage_path}: {e}")
        raise


def create_document(
    complaint_id: UUID,
    document_type: str,
    filename: str,
    file_path: str,
    processed_data: dict[str, Any],
    uploaded_by: UUID | None = None,
) -> dict[str, Any]:
    """
    Insert a documents row.

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("documents")
            .insert(
                {
                    "complaint_id": str(complaint_id),
                    "document_type": document_type,
                    "filename": filename,
                    "file_path": file_path,
                    "processed_data": processed_data,
                    "uploaded_by": str(uploaded_by) if uploaded_by else None,
                    "uploaded_at": _utc_now_iso(),
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from create_document")

        document = response.data[0]
        logger.info(
            f"Created document {document['id']} ({filename})",
            extra={"complaint_id": str(complaint_id), "document_id": document["id"]},
        )
        return document

    except Exception as e:
        logger.error(
            f"Failed to create document: {e}", extra={"complaint_id": str(complaint_id)}
        )
        raise


def get_document(document_id: UUID) -> dict[str, Any] | None:
    supabase = get_supabase()

    try:
        response = supabase.table("documents").select("*").eq("id", str(document_id)).execute()
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get document {document_id}: {e}")
        raise


def list_documents(complaint_id: UUID) -> list[dict[str, Any]]:
    """All documents of a complaint, newest first."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table("documents")
            .select("*")
            .eq("complaint_id", str(complaint_id))
            .order("created_at", desc=True)
            .execute()
        )
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list documents for complaint {complaint_id}: {e}")
        raise


def update_processed_data(document_id: UUID, processed_data: dict[str, Any]) -> dict[str, Any]:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("documents")
            .update({"processed_data": processed_data, "updated_at": _utc_now_iso()})
            .eq("id", str(document_id))
            .execute()
        )
        if not response.data:
            raise ValueError(f"Document not found: {document_id}")
        return response.data[0]

    except Exception as e:
        logger.error(
            f"Failed to update document {document_id}: {e}",
            extra={"document_id": str(document_id)},
        )
        raise


def delete_document(document_id: UUID) -> None:
    """Delete the row and, best-effort, its storage object."""
    document = get_document(document_id)
    if not document:
        raise ValueError(f"Document not found: {document_id}")

    if document.get("file_path"):
        remove_file(document["file_path"])

    supabase = get_supabase()

    try:
        supabase.table("documents").delete().eq("id", str(document_id)).execute()
        logger.info(f"Deleted document {document_id}", extra={"document_id": str(document_id)})

    except Exception as e:
        logger.error(f"Failed to delete document {document_id}: {e}")
        raise
