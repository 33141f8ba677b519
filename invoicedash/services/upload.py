"""Document upload and save-confirmation flow."""

import logging

from invoicedash.models import DocumentType, ExtractedFields, UploadResult
from invoicedash.services.normalizer import normalize_extracted_fields
from invoicedash.services.store import RecordStore
from invoicedash.services.webhook import WebhookClient, WebhookError

logger = logging.getLogger(__name__)


def resolve_doc_type(query_value: str | None, form_value: str | None) -> DocumentType:
    """
    Pick the document type for an upload.

    The query parameter wins over the form field; with neither the upload is
    treated as a receipt.

    Raises:
        ValueError: If the chosen value is not a known document type
    """
    value = query_value or form_value or DocumentType.RECEIPT.value
    return DocumentType(value.strip().lower())


async def upload_document(
    client: WebhookClient,
    filename: str,
    contents: bytes,
    content_type: str | None = None,
    doc_type: DocumentType = DocumentType.RECEIPT,
) -> UploadResult:
    """
    Send a document to the workflow for extraction.

    When the workflow answers with extracted fields they are returned so the
    user can review them before saving. Failures come back as an error result.
    """
    if not contents:
        return UploadResult(status="error", message="No file provided")

    try:
        answer = await client.upload_document(
            filename, contents, content_type or "application/octet-stream", doc_type.value
        )
    except WebhookError as e:
        logger.error(f"Upload of {filename} failed: {e}")
        return UploadResult(status="error", message=e.message)

    extracted = normalize_extracted_fields(answer, doc_type)
    label = doc_type.value.capitalize()
    if extracted is None:
        logger.info(f"Uploaded {filename}, no extracted fields returned")
        return UploadResult(status="success", message=f"{label} uploaded successfully!")

    logger.info(f"Uploaded {filename}, extracted provider={extracted.provider!r} amount={extracted.amount}")
    return UploadResult(
        status="success",
        message=f"{label} uploaded, please confirm the extracted details.",
        extracted=extracted,
    )


async def save_document(client: WebhookClient, store: RecordStore, fields: ExtractedFields) -> UploadResult:
    """Persist confirmed fields, then reload the collection on success."""
    try:
        await client.save_document(fields.model_dump(mode="json"))
    except WebhookError as e:
        logger.error(f"Saving document from {fields.provider or 'unknown provider'} failed: {e}")
        return UploadResult(status="error", message=e.message, extracted=fields)

    logger.info(f"Saved document from {fields.provider or 'unknown provider'}, refreshing collection")
    await store.refresh()
    return UploadResult(status="success", message="Document saved successfully!")
