"""Tests for the workflow webhook client."""

import json

import httpx
import pytest

from invoicedash.config import Settings
from invoicedash.services.webhook import WebhookClient, WebhookError

TEST_SETTINGS = Settings(
    invoices_webhook_url="http://workflow.test/webhook/invoice-retrieval",
    update_webhook_url="http://workflow.test/webhook/update-invoice",
    upload_form_url="http://workflow.test/form/upload",
    save_webhook_url="http://workflow.test/webhook/save_invoice",
)


def make_client(handler) -> WebhookClient:
    """Create a client whose requests are answered by ``handler``."""
    return WebhookClient(TEST_SETTINGS, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestFetchRecords:
    """Test the bulk fetch call."""

    @pytest.mark.asyncio
    async def test_returns_rows(self):
        """Should return the decoded JSON array."""
        rows = [{"invoice_nr": "INV-1"}, {"invoice_nr": "INV-2"}]

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert str(request.url) == TEST_SETTINGS.invoices_webhook_url
            return httpx.Response(200, json=rows)

        client = make_client(handler)
        assert await client.fetch_records() == rows
        await client.aclose()

    @pytest.mark.asyncio
    async def test_empty_body_is_empty_collection(self):
        """Should treat an empty answer as no rows."""
        client = make_client(lambda request: httpx.Response(200, text="  "))
        assert await client.fetch_records() == []

    @pytest.mark.asyncio
    async def test_single_object_is_one_row(self):
        """Should wrap a single JSON object in a list."""
        client = make_client(lambda request: httpx.Response(200, json={"invoice_nr": "INV-1"}))
        assert await client.fetch_records() == [{"invoice_nr": "INV-1"}]

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        """Should raise when the workflow answers without JSON."""
        client = make_client(lambda request: httpx.Response(200, text="Workflow was started"))
        with pytest.raises(WebhookError, match="no JSON data"):
            await client.fetch_records()

    @pytest.mark.asyncio
    async def test_error_status(self):
        """Should raise with the status code on a non-success answer."""
        client = make_client(lambda request: httpx.Response(404, text="Not registered"))
        with pytest.raises(WebhookError) as exc_info:
            await client.fetch_records()
        assert exc_info.value.status_code == 404
        assert exc_info.value.webhook == "fetch"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Should wrap transport errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        client = make_client(handler)
        with pytest.raises(WebhookError, match="Failed to connect"):
            await client.fetch_records()


class TestUpdateRecord:
    """Test the category update call."""

    @pytest.mark.asyncio
    async def test_payload(self):
        """Should send id, category, status and the legacy label field."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True})

        client = make_client(handler)
        await client.update_record("INV-7", "Food", "categorized")

        assert seen["url"] == TEST_SETTINGS.update_webhook_url
        assert seen["body"] == {
            "id": "INV-7",
            "invoice_nr": "INV-7",
            "category": "Food",
            "status": "categorized",
            "label": "categorized",
        }

    @pytest.mark.asyncio
    async def test_failure(self):
        """Should raise on a non-success answer."""
        client = make_client(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(WebhookError):
            await client.update_record("INV-7", "Food", "categorized")


class TestUploadAndSave:
    """Test the upload and save calls."""

    @pytest.mark.asyncio
    async def test_upload_sends_type_and_file(self):
        """Should post the type as query parameter and form field, and the file as 'data'."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["type_param"] = request.url.params.get("type")
            seen["body"] = request.content
            return httpx.Response(200, json={"provider": "Migros", "amount": 12.5})

        client = make_client(handler)
        answer = await client.upload_document("ticket.pdf", b"%PDF-1.4 data", "application/pdf", "receipt")

        assert answer == {"provider": "Migros", "amount": 12.5}
        assert seen["type_param"] == "receipt"
        assert b'name="type"' in seen["body"]
        assert b'name="data"; filename="ticket.pdf"' in seen["body"]
        assert seen["body"].index(b'name="type"') < seen["body"].index(b'name="data"')

    @pytest.mark.asyncio
    async def test_upload_without_json_answer(self):
        """Should return None when the workflow sends no JSON."""
        client = make_client(lambda request: httpx.Response(200, text="Form submitted"))
        assert await client.upload_document("a.png", b"png", "image/png", "invoice") is None

    @pytest.mark.asyncio
    async def test_save_posts_fields(self):
        """Should post the fields as JSON."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200)

        client = make_client(handler)
        await client.save_document({"provider": "SBB", "amount": 55.0})
        assert seen["body"] == {"provider": "SBB", "amount": 55.0}

    @pytest.mark.asyncio
    async def test_save_failure(self):
        """Should raise when saving fails."""
        client = make_client(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(WebhookError) as exc_info:
            await client.save_document({"provider": "SBB"})
        assert exc_info.value.webhook == "save"
