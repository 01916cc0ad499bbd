"""
Record store client for CCR Sync.

This module wraps the hosted record store (PocketBase-style REST API) used by
the plant dashboard. It exposes the small surface the sync core depends on:
query, single-page listing, create, update, delete and change subscriptions.

Transport failures are mapped onto a small exception taxonomy so callers can
decide what to retry and what to surface.
"""

import json
import logging
import threading

import requests

from runtime.defaults import DEFAULT_REQUEST_TIMEOUT_S


FULL_LIST_PAGE_SIZE = 500
TRANSIENT_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class RecordStoreError(Exception):
    """Base exception for record store failures."""
    pass


class TransientStoreError(RecordStoreError):
    """Raised for failures worth retrying (timeout, reset, throttling, 5xx)."""
    pass


class RecordNotFoundError(RecordStoreError):
    """Raised when a record or collection does not exist."""
    pass


def _quote(value):
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def _render_term(field, value):
    if isinstance(value, tuple) and len(value) == 3 and value[0] == "between":
        _, low, high = value
        return f"({field}>={_quote(low)} && {field}<={_quote(high)})"
    if isinstance(value, tuple) and len(value) == 2:
        operator, operand = value
        if operator not in {"=", "!=", "~", ">", ">=", "<", "<="}:
            raise ValueError(f"Unsupported filter operator '{operator}' for field '{field}'.")
        return f"{field}{operator}{_quote(operand)}"
    if isinstance(value, (list, set, frozenset)):
        options = [f"{field}={_quote(item)}" for item in sorted(value, key=str)]
        if not options:
            raise ValueError(f"Empty any-of filter for field '{field}'.")
        if len(options) == 1:
            return options[0]
        return "(" + " || ".join(options) + ")"
    if value is None:
        return f"{field}=null"
    return f"{field}={_quote(value)}"


def build_filter_expression(filters):
    """
    Render a filter dict into the store filter language.

    Supported values per field:
    - scalar: equality (`date="2026-10-17"`)
    - list/set: any-of (`(parameter_id="a" || parameter_id="b")`)
    - (operator, operand): one of =, !=, ~ (LIKE), >, >=, <, <=
    - ("between", low, high): inclusive range
    """
    if not filters:
        return ""
    return " && ".join(_render_term(field, value) for field, value in filters.items())


class RecordStoreClient:
    """
    Wrapper class for the hosted record store REST API.

    All calls are blocking and use a fixed request timeout; callers run them on
    worker threads.
    """

    def __init__(
        self,
        base_url: str,
        auth_token: str = None,
        timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S,
        http_session=None,
    ):
        """
        Initialize the record store client.

        Args:
            base_url: Root URL of the store (without /api)
            auth_token: Optional token sent as Authorization header
            timeout_s: Request timeout applied to every call
            http_session: Optional requests.Session to reuse connections
        """
        self.base_url = str(base_url).rstrip("/")
        self.timeout_s = float(timeout_s)
        self._auth_token = auth_token or None
        self._http = http_session or requests.Session()
        self.realtime_reconnect_s = 5.0

    def _headers(self):
        headers = {"Content-Type": "application/json"}
        if self._auth_token:
            headers["Authorization"] = self._auth_token
        return headers

    def _records_url(self, collection, record_id=None):
        url = f"{self.base_url}/api/collections/{collection}/records"
        if record_id is not None:
            url = f"{url}/{record_id}"
        return url

    def _request(self, method, url, **kwargs):
        try:
            response = self._http.request(
                method,
                url,
                headers=self._headers(),
                timeout=self.timeout_s,
                **kwargs,
            )
        except requests.exceptions.Timeout as exc:
            raise TransientStoreError(f"Request timed out after {self.timeout_s:.0f}s: {method} {url}") from exc
        except requests.exceptions.ConnectionError as exc:
            raise TransientStoreError(f"Connection error: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            raise RecordStoreError(f"Request failed: {exc}") from exc

        if response.status_code == 404:
            raise RecordNotFoundError(f"Not found: {method} {url}")
        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientStoreError(f"HTTP {response.status_code}: {method} {url}")
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as exc:
            raise RecordStoreError(f"HTTP error: {exc}") from exc

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def list_page(self, collection, page=1, per_page=50, filters=None, sort=None, fields=None):
        """Fetch one page of records with the store's pagination metadata."""
        params = {"page": int(page), "perPage": int(per_page)}
        expression = build_filter_expression(filters)
        if expression:
            params["filter"] = expression
        if sort:
            params["sort"] = sort
        if fields:
            params["fields"] = fields
        payload = self._request("GET", self._records_url(collection), params=params) or {}
        return {
            "items": list(payload.get("items", [])),
            "page": int(payload.get("page", page)),
            "per_page": int(payload.get("perPage", per_page)),
            "total_items": int(payload.get("totalItems", 0)),
            "total_pages": int(payload.get("totalPages", 0)),
        }

    def query(self, collection, filters=None, sort=None):
        """
        Fetch every record matching `filters`.

        A missing collection yields an empty list: reference and aggregate
        collections may not exist yet on a fresh deployment.
        """
        records = []
        page = 1
        try:
            while True:
                result = self.list_page(collection, page, FULL_LIST_PAGE_SIZE, filters=filters, sort=sort)
                records.extend(result["items"])
                if page >= result["total_pages"] or not result["items"]:
                    break
                page += 1
        except RecordNotFoundError:
            logging.info("Record store: collection '%s' not found, treating as empty.", collection)
            return []
        return records

    def get_one(self, collection, record_id):
        return self._request("GET", self._records_url(collection, record_id))

    def create(self, collection, fields):
        return self._request("POST", self._records_url(collection), json=dict(fields))

    def update(self, collection, record_id, fields):
        return self._request("PATCH", self._records_url(collection, record_id), json=dict(fields))

    def delete(self, collection, record_id):
        self._request("DELETE", self._records_url(collection, record_id))

    def subscribe_to_changes(self, collection, handler):
        """
        Subscribe to create/update/delete events of a collection.

        Events are delivered to `handler({"action": ..., "record": {...}})` from a
        daemon thread reading the realtime event stream. Returns an unsubscribe
        callable.
        """
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._realtime_loop,
            args=(collection, handler, stop_event),
            name=f"record-store-realtime-{collection}",
            daemon=True,
        )
        thread.start()

        def unsubscribe():
            stop_event.set()

        return unsubscribe

    def _realtime_loop(self, collection, handler, stop_event):
        url = f"{self.base_url}/api/realtime"
        while not stop_event.is_set():
            try:
                with self._http.get(url, headers=self._headers(), stream=True, timeout=(self.timeout_s, None)) as response:
                    response.raise_for_status()
                    self._consume_event_stream(response, collection, handler, stop_event)
            except (requests.exceptions.RequestException, RecordStoreError) as exc:
                logging.warning("Record store: realtime stream for '%s' dropped: %s", collection, exc)
            if not stop_event.is_set():
                stop_event.wait(self.realtime_reconnect_s)

    def _consume_event_stream(self, response, collection, handler, stop_event):
        event_name = None
        data_lines = []
        for raw_line in response.iter_lines(decode_unicode=True):
            if stop_event.is_set():
                return
            line = raw_line or ""
            if line.startswith("event:"):
                event_name = line[len("event:"):].strip()
            elif line.startswith("data:"):
                data_lines.append(line[len("data:"):].strip())
            elif line == "":
                if data_lines:
                    self._dispatch_event(event_name, "\n".join(data_lines), collection, handler)
                event_name = None
                data_lines = []

    def _dispatch_event(self, event_name, data_text, collection, handler):
        try:
            payload = json.loads(data_text)
        except ValueError:
            logging.warning("Record store: ignoring malformed realtime payload for '%s'.", collection)
            return

        if event_name == "PB_CONNECT":
            client_id = payload.get("clientId")
            self._request(
                "POST",
                f"{self.base_url}/api/realtime",
                json={"clientId": client_id, "subscriptions": [f"{collection}/*"]},
            )
            logging.info("Record store: subscribed to '%s' changes.", collection)
            return

        if "action" in payload and "record" in payload:
            try:
                handler({"action": payload["action"], "record": payload["record"]})
            except Exception as exc:
                logging.error("Record store: change handler for '%s' failed: %s", collection, exc)
