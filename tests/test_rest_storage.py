from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
import requests

from territory_run.errors import StorageError, StoragePolicyError
from territory_run.http_client import create_storage_session
from territory_run.models import TrackingMode
from territory_run.storage import RestStorageClient

WHEN = datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)


class FakeResp:
    """Minimal fake response matching needed parts of requests.Response."""

    def __init__(self, status_code=200, data=None, headers=None, url=""):
        self.status_code = status_code
        self._data = data
        self.headers = headers or {}
        self.url = url

    def json(self):
        if self._data is None:
            raise ValueError("No JSON body")
        return self._data

    @property
    def text(self):
        if self._data is None:
            return ""
        try:
            return json.dumps(self._data)
        except Exception:
            return str(self._data)

    @property
    def content(self):
        return self.text.encode()


class FakeSession:
    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def request(self, method, url, json=None, params=None, headers=None, timeout=None):
        self.calls.append(
            {
                "method": method,
                "url": url,
                "json": json,
                "params": params,
                "headers": headers,
                "timeout": timeout,
            }
        )
        if not self.responses:
            return FakeResp(204)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(*responses):
    session = FakeSession(responses)
    return RestStorageClient("https://db.test/", session=session, timeout=7.0), session


def test_base_url_is_required() -> None:
    with pytest.raises(ValueError):
        RestStorageClient("", session=FakeSession())


def test_create_session_returns_id() -> None:
    client, session = _client(FakeResp(201, [{"id": "sess-1"}]))

    session_id = client.create_session("user-1", "city-1", TrackingMode.CYCLE, True, WHEN)

    assert session_id == "sess-1"
    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://db.test/rest/v1/sessions"
    assert call["json"] == {
        "user_id": "user-1",
        "city_id": "city-1",
        "mode": "cycle",
        "live_mode": True,
        "started_at": "2025-01-01T10:00:00Z",
    }
    assert call["headers"]["Prefer"] == "return=representation"
    assert call["timeout"] == 7.0


def test_policy_rejection_keeps_server_message() -> None:
    client, _ = _client(
        FakeResp(403, {"message": "new row violates row-level security policy", "code": "42501"})
    )
    with pytest.raises(StoragePolicyError, match="row-level security"):
        client.create_session("user-1", "city-1", "walk_run", False, WHEN)


def test_server_error_and_transport_error_raise_storage_error() -> None:
    client, _ = _client(FakeResp(500, {"message": "db down"}), requests.ConnectionError("refused"))

    with pytest.raises(StorageError) as first:
        client.finalize_session("sess-1", WHEN, False, 10.0, 10.0)
    assert not isinstance(first.value, StoragePolicyError)
    with pytest.raises(StorageError, match="refused"):
        client.finalize_session("sess-1", WHEN, False, 10.0, 10.0)


def test_raw_point_upsert_omits_snapped_columns() -> None:
    client, session = _client()

    client.upsert_point("sess-1", WHEN, (51.5, -0.12), None, 4.0, 1.2)

    call = session.calls[0]
    assert call["params"] == {"on_conflict": "session_id,ts"}
    assert "merge-duplicates" in call["headers"]["Prefer"]
    assert call["json"]["raw_geom"] == "SRID=4326;POINT (-0.12 51.5)"
    assert "snapped_geom" not in call["json"]
    assert "snapped" not in call["json"]


def test_snapped_point_upsert_sends_snap() -> None:
    client, session = _client()

    client.upsert_point("sess-1", WHEN, (51.5, -0.12), (51.6, -0.13))

    row = session.calls[0]["json"]
    assert row["snapped_geom"] == "SRID=4326;POINT (-0.13 51.6)"
    assert row["snapped"] is True


def test_claim_sends_ewkt_polygon_and_uses_server_message() -> None:
    client, session = _client(FakeResp(200, {"message": "Claimed 3 blocks", "territory_id": 9}))

    result = client.claim_territory("user-1", "city-1", "sess-1", "MULTIPOLYGON (((0 0, 1 0, 1 1, 0 0)))")

    call = session.calls[0]
    assert call["url"].endswith("/rest/v1/rpc/claim_territory")
    assert call["json"]["p_polygon"] == "SRID=4326;MULTIPOLYGON (((0 0, 1 0, 1 1, 0 0)))"
    assert call["json"]["p_session_id"] == "sess-1"
    assert result.message == "Claimed 3 blocks"
    assert result.data["territory_id"] == 9


def test_claim_without_message_uses_default() -> None:
    client, _ = _client(FakeResp(200, "territory-uuid"))
    result = client.claim_territory("u", "c", "s", "MULTIPOLYGON (((0 0, 1 0, 1 1, 0 0)))")
    assert result.message == "Territory claimed!"
    assert result.data == "territory-uuid"


def test_live_offline_patches_existing_row() -> None:
    client, session = _client()

    client.publish_live_position("user-1", "city-1", "Runner", None, None, False)

    call = session.calls[0]
    assert call["method"] == "PATCH"
    assert call["params"] == {"user_id": "eq.user-1", "city_id": "eq.city-1"}
    assert call["json"]["is_live"] is False


def test_live_update_upserts_point_and_trail() -> None:
    client, session = _client()

    client.publish_live_position(
        "user-1", "city-1", "Runner", (51.5, -0.12), "LINESTRING (0 0, 1 1)", True
    )

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["params"] == {"on_conflict": "user_id,city_id"}
    assert call["json"]["last_point"] == "SRID=4326;POINT (-0.12 51.5)"
    assert call["json"]["last_trail"] == "SRID=4326;LINESTRING (0 0, 1 1)"
    assert call["json"]["username"] == "Runner"


def test_storage_session_carries_auth_headers() -> None:
    session = create_storage_session("anon-key", "user-token")
    assert session.headers["apikey"] == "anon-key"
    assert session.headers["Authorization"] == "Bearer user-token"
    assert session.headers["Content-Type"] == "application/json"
