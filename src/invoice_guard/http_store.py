"""REST implementation of :class:`~invoice_guard.store.InvoiceStore`.

Talks to the inventory backend over ``requests``. Most endpoints wrap their
result in an envelope ``{"errorCode": "000000", "responseData": ...}``; a few
return the bare JSON value. Both shapes are accepted. Every failure, whether
reported in the envelope, as an HTTP error status, or raised by ``requests``,
surfaces as :class:`~invoice_guard.errors.StoreError`.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

import requests

from . import log
from .constants import SUCCESS_ERROR_CODE
from .errors import ErrorCategory, StoreError
from .models import InvoiceRecord, ItemPage, ItemRecord, SettlementRecord
from .store import parse_invoice, parse_item, parse_item_page, parse_settlement


DEFAULT_TIMEOUT = 10.0


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def extract_error_description(body: Any) -> Optional[str]:
    """Pull the most specific error message out of a response body."""
    if isinstance(body, Mapping):
        for key in ("errorDescription", "message", "errorMessage"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None
    if isinstance(body, str) and body.strip():
        return body.strip()
    return None


class HttpInvoiceStore:
    """Invoice store backed by the inventory REST API.

    Args:
        base_url (str): Backend root, e.g. ``http://localhost:8080``.
        session (requests.Session | None): Session to issue requests with;
            a new one is created when omitted.
        token (str | None): Bearer token sent with every request.
        timeout (float): Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.token = token
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Issue one request and return the unwrapped response data.

        Raises:
            StoreError: On transport failures, HTTP error statuses, and
                envelopes carrying a non-success ``errorCode``.
        """
        url = f"{self.base_url}{path}"
        data = json.dumps(payload, default=_encode) if payload is not None else None
        log.debug("%s %s", method, url)
        try:
            response = self.session.request(
                method,
                url,
                data=data,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as exc:
            log.error("%s %s timed out after %ss", method, url, self.timeout)
            raise StoreError(None, "The server did not respond in time.", category=ErrorCategory.TRANSIENT) from exc
        except requests.exceptions.ConnectionError as exc:
            log.error("%s %s failed to connect: %s", method, url, exc)
            raise StoreError(None, "Unable to reach the server.", category=ErrorCategory.TRANSIENT) from exc
        except requests.exceptions.RequestException as exc:
            log.error("%s %s failed: %s", method, url, exc)
            raise StoreError(None, str(exc), category=ErrorCategory.UNKNOWN) from exc

        body = self._decode(response)
        if response.status_code >= 400:
            code = body.get("errorCode") if isinstance(body, Mapping) else None
            description = extract_error_description(body)
            log.error("%s %s returned %s: %s", method, url, response.status_code, description)
            raise StoreError(code, description, status=response.status_code)

        if isinstance(body, Mapping) and "errorCode" in body:
            code = str(body.get("errorCode"))
            if code != SUCCESS_ERROR_CODE:
                description = extract_error_description(body)
                log.error("%s %s rejected with %s: %s", method, url, code, description)
                raise StoreError(
                    code,
                    description,
                    status=response.status_code,
                    category=ErrorCategory.CONFLICT,
                )
            return body.get("responseData")
        return body

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    # ------------------------------------------------------------------
    # InvoiceStore operations
    # ------------------------------------------------------------------

    def fetch_items_by_query(self, search: str, page: int, page_size: int) -> ItemPage:
        data = self._request(
            "POST",
            "/api/items/filter",
            payload={"search": search, "page": page, "pageSize": page_size},
        )
        return parse_item_page(data or {})

    def persist_invoice(self, payload: Mapping[str, Any]) -> InvoiceRecord:
        body = dict(payload)
        invoice_id = body.pop("invoiceId", None)
        if invoice_id is None:
            data = self._request("POST", "/api/invoices", payload=body)
        else:
            data = self._request("PUT", f"/api/invoices/{invoice_id}", payload=body)
        record = parse_invoice(data or {})
        log.info("Invoice %s persisted with status %s", record.invoice_id, record.status.value)
        return record

    def get_invoice(self, invoice_id: str) -> InvoiceRecord:
        data = self._request("GET", f"/api/invoices/{invoice_id}")
        return parse_invoice(data or {})

    def list_invoices(self) -> List[InvoiceRecord]:
        data = self._request("GET", "/api/invoices")
        return [parse_invoice(entry) for entry in data or ()]

    def persist_settlement(self, payload: Mapping[str, Any]) -> SettlementRecord:
        data = self._request("POST", "/api/settlements", payload=payload)
        record = parse_settlement(data or {})
        log.info("Settlement %s recorded for invoice %s", record.settlement_id, record.invoice_id)
        return record

    def delete_settlement(self, settlement_id: str) -> None:
        self._request("DELETE", f"/api/settlements/{settlement_id}")
        log.info("Settlement %s deleted", settlement_id)

    def adjust_stock(self, item_id: str, payload: Mapping[str, Any]) -> ItemRecord:
        data = self._request("POST", f"/api/items/{item_id}/adjust-stock", payload=payload)
        if isinstance(data, Mapping) and isinstance(data.get("data"), Mapping):
            data = data["data"]
        record = parse_item(data or {"id": item_id})
        log.info("Stock for item %s adjusted to %s", item_id, record.available)
        return record


__all__ = ["DEFAULT_TIMEOUT", "HttpInvoiceStore", "extract_error_description"]
