import json
import threading
import unittest

import requests

from record_store.client import (
    RecordNotFoundError,
    RecordStoreClient,
    RecordStoreError,
    TransientStoreError,
    build_filter_expression,
)


class _FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode("utf-8")

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")


class _FakeHttpSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(responses):
    http = _FakeHttpSession(responses)
    return RecordStoreClient("http://store.local/", auth_token="tok", timeout_s=30, http_session=http), http


class FilterExpressionTests(unittest.TestCase):
    def test_equality_any_of_and_operators(self):
        expression = build_filter_expression(
            {
                "date": "2026-10-17",
                "parameter_id": ["b", "a"],
                "name": ("~", "Feeder"),
                "total_production": (">", 0),
            }
        )
        self.assertEqual(
            expression,
            'date="2026-10-17" && (parameter_id="a" || parameter_id="b") && name~"Feeder" && total_production>"0"',
        )

    def test_range_and_quoting(self):
        self.assertEqual(
            build_filter_expression({"date": ("between", "2026-10-01", "2026-10-31")}),
            '(date>="2026-10-01" && date<="2026-10-31")',
        )
        self.assertEqual(build_filter_expression({"name": 'A "B"'}), 'name="A \\"B\\""')
        self.assertEqual(build_filter_expression(None), "")

    def test_invalid_filters_raise(self):
        with self.assertRaises(ValueError):
            build_filter_expression({"value": ("^", 1)})
        with self.assertRaises(ValueError):
            build_filter_expression({"parameter_id": []})


class RecordStoreClientTests(unittest.TestCase):
    def test_query_pages_through_results(self):
        client, http = _client(
            [
                _FakeResponse(200, {"items": [{"id": "1"}], "page": 1, "perPage": 500, "totalItems": 2, "totalPages": 2}),
                _FakeResponse(200, {"items": [{"id": "2"}], "page": 2, "perPage": 500, "totalItems": 2, "totalPages": 2}),
            ]
        )

        records = client.query("ccr_parameter_data", filters={"date": "2026-10-17"}, sort="-created")

        self.assertEqual([record["id"] for record in records], ["1", "2"])
        self.assertEqual(http.calls[0]["url"], "http://store.local/api/collections/ccr_parameter_data/records")
        self.assertEqual(http.calls[0]["params"]["filter"], 'date="2026-10-17"')
        self.assertEqual(http.calls[0]["params"]["sort"], "-created")
        self.assertEqual(http.calls[1]["params"]["page"], 2)
        self.assertEqual(http.calls[0]["timeout"], 30.0)
        self.assertEqual(http.calls[0]["headers"]["Authorization"], "tok")

    def test_query_on_missing_collection_returns_empty(self):
        client, _ = _client([_FakeResponse(404, {"message": "missing"})])
        self.assertEqual(client.query("ccr_footer_data"), [])

    def test_get_one_missing_record_raises_not_found(self):
        client, _ = _client([_FakeResponse(404, {"message": "missing"})])
        with self.assertRaises(RecordNotFoundError):
            client.get_one("parameter_settings", "nope")

    def test_transient_failures_are_classified(self):
        client, _ = _client(
            [
                _FakeResponse(503, {"message": "busy"}),
                _FakeResponse(429, {"message": "slow down"}),
                requests.exceptions.Timeout("timed out"),
                requests.exceptions.ConnectionError("reset"),
            ]
        )
        for _ in range(4):
            with self.assertRaises(TransientStoreError):
                client.create("ccr_parameter_data", {"hour1": 1})

    def test_client_errors_are_not_transient(self):
        client, _ = _client([_FakeResponse(400, {"message": "bad"})])
        with self.assertRaises(RecordStoreError) as ctx:
            client.update("ccr_parameter_data", "r1", {"hour1": 1})
        self.assertNotIsInstance(ctx.exception, TransientStoreError)

    def test_update_patches_only_given_fields(self):
        client, http = _client([_FakeResponse(200, {"id": "r1", "hour3": 4.0})])

        result = client.update("ccr_parameter_data", "r1", {"hour3": 4.0, "hour3_user": "Andi"})

        self.assertEqual(result["hour3"], 4.0)
        self.assertEqual(http.calls[0]["method"], "PATCH")
        self.assertEqual(http.calls[0]["url"], "http://store.local/api/collections/ccr_parameter_data/records/r1")
        self.assertEqual(http.calls[0]["json"], {"hour3": 4.0, "hour3_user": "Andi"})

    def test_delete_accepts_empty_response(self):
        client, http = _client([_FakeResponse(204)])
        self.assertIsNone(client.delete("ccr_parameter_data", "r1"))
        self.assertEqual(http.calls[0]["method"], "DELETE")

    def test_realtime_events_reach_the_handler(self):
        client, http = _client([_FakeResponse(204)])
        events = []

        client._dispatch_event("PB_CONNECT", json.dumps({"clientId": "c1"}), "ccr_parameter_data", events.append)
        client._dispatch_event(
            "ccr_parameter_data/*",
            json.dumps({"action": "update", "record": {"id": "r1"}}),
            "ccr_parameter_data",
            events.append,
        )
        client._dispatch_event("x", "not json", "ccr_parameter_data", events.append)

        self.assertEqual(http.calls[0]["json"], {"clientId": "c1", "subscriptions": ["ccr_parameter_data/*"]})
        self.assertEqual(events, [{"action": "update", "record": {"id": "r1"}}])


class _FakeStream:
    def __init__(self, lines):
        self.lines = lines

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def raise_for_status(self):
        pass

    def iter_lines(self, decode_unicode=False):
        return iter(self.lines)


class _FakeRealtimeSession(_FakeHttpSession):
    def __init__(self, streams, responses):
        super().__init__(responses)
        self.streams = list(streams)
        self.connects = 0

    def get(self, url, **kwargs):
        self.connects += 1
        return self.streams.pop(0)


class RealtimeLoopTests(unittest.TestCase):
    def test_failed_subscribe_reconnects_instead_of_stopping(self):
        connect = ["event: PB_CONNECT", 'data: {"clientId": "c1"}', ""]
        change = ["event: ccr_parameter_data/*", 'data: {"action": "create", "record": {"id": "r1"}}', ""]
        http = _FakeRealtimeSession(
            streams=[_FakeStream(connect), _FakeStream(connect + change)],
            responses=[_FakeResponse(503, {"message": "busy"}), _FakeResponse(204)],
        )
        client = RecordStoreClient("http://store.local", http_session=http)
        client.realtime_reconnect_s = 0
        stop_event = threading.Event()
        events = []

        def _handler(event):
            events.append(event)
            stop_event.set()

        client._realtime_loop("ccr_parameter_data", _handler, stop_event)

        self.assertEqual(http.connects, 2)
        self.assertEqual(len(http.calls), 2)
        self.assertEqual(events, [{"action": "create", "record": {"id": "r1"}}])


if __name__ == "__main__":
    unittest.main()
