from __future__ import annotations
from typing import Any
import logging
import requests

from readsync.config import READER_API_BASE_URL
from readsync.reader.types import ListDocumentsResponse, ReaderApiError, ReaderDocument

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30


def _parse_retry_after(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class ReaderClient:
    """Thin client for the Readwise Reader v3 API. Every method issues exactly one HTTP request."""

    def __init__(self, access_token: str, session: requests.Session | None = None, base_url: str = READER_API_BASE_URL):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self._headers = {
            "Authorization": f"Token {access_token}",
            "Content-Type": "application/json",
        }

    def _get(self, endpoint: str, params: dict[str, Any]) -> dict:
        query = {k: v for k, v in params.items() if v is not None}
        response = self.session.get(
            f"{self.base_url}{endpoint}",
            headers=self._headers,
            params=query,
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

        if not response.ok:
            logger.warning("Reader API %s returned %s", endpoint, response.status_code)
            detail = None
            if response.headers.get("content-type", "").startswith("application/json"):
                try:
                    body = response.json()
                    detail = body.get("detail") or body.get("message")
                except ValueError:
                    pass
            raise ReaderApiError(
                detail or f"Request failed with status {response.status_code}",
                response.status_code,
                detail,
                _parse_retry_after(response.headers.get("retry-after")),
            )

        return response.json()

    def list_documents(
        self,
        *,
        location: str | None = None,
        category: str | None = None,
        page_cursor: str | None = None,
        page_size: int | None = None,
        updated_after: str | None = None,
        with_html_content: bool | None = None,
    ) -> ListDocumentsResponse:
        params: dict[str, Any] = {
            "location": location,
            "category": category,
            "pageCursor": page_cursor,
            "limit": page_size,
            "updatedAfter": updated_after,
        }
        if with_html_content is not None:
            params["withHtmlContent"] = "true" if with_html_content else "false"

        return ListDocumentsResponse.model_validate(self._get("/list/", params))

    def get_document(self, document_id: str, include_content: bool = False) -> ReaderDocument:
        params: dict[str, Any] = {"id": document_id}
        if include_content:
            params["withHtmlContent"] = "true"

        response = ListDocumentsResponse.model_validate(self._get("/list/", params))
        if not response.results:
            raise ReaderApiError(f"Document not found: {document_id}", 404)
        return response.results[0]

    def validate_token(self) -> bool:
        self._get("/list/", {"limit": 1})
        return True
