"""HTTP client for the workflow-automation webhooks behind the dashboard."""

import json
import logging
from typing import Any

import httpx

from invoicedash.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class WebhookError(Exception):
    """Raised when a webhook call fails or answers with something unusable."""

    def __init__(self, webhook: str, message: str, status_code: int | None = None):
        self.webhook = webhook
        self.status_code = status_code
        self.message = message
        super().__init__(f"{webhook}: {message}")


class WebhookClient:
    """
    Thin async client for the four webhooks: fetch, update, upload and save.

    Every failure (transport error, non-2xx answer, missing JSON where JSON
    is required) is raised as WebhookError.
    """

    def __init__(self, config: Settings | None = None, http_client: httpx.AsyncClient | None = None):
        self.config = config or default_settings
        self._http = http_client or httpx.AsyncClient(timeout=self.config.webhook_timeout)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _send(self, webhook: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"[{webhook}] request to {url} failed: {e}")
            raise WebhookError(webhook, f"Failed to connect to workflow: {e}") from e

        if response.is_error:
            logger.error(f"[{webhook}] responded with {response.status_code}: {response.text[:200]}")
            raise WebhookError(
                webhook,
                f"Workflow responded with {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response

    async def fetch_records(self) -> list[Any]:
        """
        Fetch the raw document rows.

        An empty body means no rows. A single JSON object is treated as a
        one-row collection.
        """
        response = await self._send(
            "fetch",
            "GET",
            self.config.invoices_webhook_url,
            headers={"Content-Type": "application/json", "Cache-Control": "no-store"},
        )

        text = response.text
        if not text.strip():
            logger.warning("Workflow returned an empty response, treating it as no documents")
            return []

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Workflow response was not JSON: {text[:200]}")
            raise WebhookError("fetch", "Workflow returned successfully but sent no JSON data") from e

        if isinstance(data, dict):
            return [data]
        if not isinstance(data, list):
            raise WebhookError("fetch", f"Expected a list of documents, got {type(data).__name__}")

        logger.info(f"Fetched {len(data)} documents from workflow")
        return data

    async def update_record(self, record_id: str, category: str, status: str) -> None:
        """Push a category/status change. Only success or failure matters."""
        payload = {
            "id": record_id,
            "invoice_nr": record_id,
            "category": category,
            "status": status,
            # Older workflows read the status from the label column
            "label": status,
        }
        logger.debug(f"Syncing {record_id}: {payload}")
        await self._send("update", "POST", self.config.update_webhook_url, json=payload)

    async def upload_document(
        self, filename: str, contents: bytes, content_type: str, doc_type: str
    ) -> Any | None:
        """
        Forward a document to the upload form.

        Returns the decoded JSON answer (extracted fields) when the workflow
        sends one, otherwise None.
        """
        logger.info(f"Uploading {filename} ({len(contents)} bytes) as {doc_type}")
        response = await self._send(
            "upload",
            "POST",
            self.config.upload_form_url,
            params={"type": doc_type},
            # The type field goes first so streaming parsers see it before the file
            data={"type": doc_type},
            files={"data": (filename, contents, content_type)},
        )
        if not response.text.strip():
            return None
        try:
            return response.json()
        except json.JSONDecodeError:
            logger.debug(f"Upload answer was not JSON: {response.text[:200]}")
            return None

    async def save_document(self, fields: dict[str, Any]) -> None:
        """Persist confirmed document fields to the system of record."""
        await self._send("save", "POST", self.config.save_webhook_url, json=fields)
