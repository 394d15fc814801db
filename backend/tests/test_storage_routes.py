"""Test the sync protocol routes end to end."""

import pytest
from app.auth import ALERT_HEADER

BASE = "/1.0/alice"


@pytest.fixture
def put(client, alice):
    def _put(path, body, **kwargs):
        return client.put(f"{BASE}/{path}", json=body, auth=alice, **kwargs)

    return _put


class TestRecordLifecycle:
    """Write, read, conditionally overwrite and delete a record."""

    def test_full_cycle(self, client, alice, put):
        """A record goes through its whole lifecycle."""
        response = put("bookmarks/abc", {"payload": "hello", "sortindex": 5})
        assert response.status_code == 200
        written = response.json()
        assert isinstance(written, float)

        record = client.get(f"{BASE}/bookmarks/abc", auth=alice).json()
        assert record == {"id": "abc", "sortindex": 5, "modified": written, "payload": "hello"}

        assert client.get(f"{BASE}/bookmarks", auth=alice).json() == ["abc"]
        assert client.get(BASE, auth=alice).json() == ["bookmarks"]

        stale = put(
            "bookmarks/abc",
            {"payload": "late"},
            headers={"X-If-Unmodified-Since": str(written - 1)},
        )
        assert stale.status_code == 412
        assert stale.json() == "4"
        assert client.get(f"{BASE}/bookmarks/abc", auth=alice).json()["payload"] == "hello"

        deleted = client.delete(f"{BASE}/bookmarks/abc", auth=alice)
        assert deleted.status_code == 200
        assert deleted.json() >= written

        missing = client.get(f"{BASE}/bookmarks/abc", auth=alice)
        assert missing.status_code == 404

    def test_precondition_met(self, client, alice, put):
        """A write carrying an up-to-date timestamp succeeds."""
        written = put("bookmarks/abc", {"payload": "v1"}).json()
        response = put(
            "bookmarks/abc",
            {"payload": "v2"},
            headers={"X-If-Unmodified-Since": str(written)},
        )
        assert response.status_code == 200
        assert client.get(f"{BASE}/bookmarks/abc", auth=alice).json()["payload"] == "v2"

    def test_unparsable_precondition(self, put):
        """A malformed X-If-Unmodified-Since is a bad request."""
        response = put("bookmarks/abc", {"payload": "v1"}, headers={"X-If-Unmodified-Since": "yesterday"})
        assert response.status_code == 400

    @pytest.mark.parametrize("value", ["nan", "inf", "-inf", "1e400"])
    def test_non_finite_precondition(self, client, alice, put, value):
        """A timestamp that is not a finite number is a bad request and writes nothing."""
        response = put("bookmarks/abc", {"payload": "v1"}, headers={"X-If-Unmodified-Since": value})
        assert response.status_code == 400
        assert client.get(f"{BASE}/bookmarks", auth=alice).json() == []

    def test_id_from_body(self, client, alice, put):
        """PUT on the collection takes the id from the body."""
        assert put("bookmarks", {"id": "frombody", "payload": "x"}).status_code == 200
        assert client.get(f"{BASE}/bookmarks/frombody", auth=alice).status_code == 200

    def test_body_id_wins_over_path(self, client, alice, put):
        """An id in the body takes precedence over the path id."""
        put("bookmarks/pathid", {"id": "bodyid", "payload": "x"})
        assert client.get(f"{BASE}/bookmarks", auth=alice).json() == ["bodyid"]

    def test_weight_only_update(self, client, alice, put):
        """A PUT without payload changes sortindex but keeps modified."""
        written = put("bookmarks/abc", {"payload": "hello", "sortindex": 1}).json()
        assert put("bookmarks/abc", {"sortindex": 42}).status_code == 200
        record = client.get(f"{BASE}/bookmarks/abc", auth=alice).json()
        assert record["sortindex"] == 42
        assert record["modified"] == written
        assert record["payload"] == "hello"

    def test_owner_is_case_insensitive(self, client, alice, put):
        """Paths address the lower-cased owner."""
        put("bookmarks/abc", {"payload": "x"})
        response = client.get("/1.0/ALICE/bookmarks", auth=alice)
        assert response.json() == ["abc"]


class TestBatch:
    """POST writes many records with per-record results."""

    def test_partial_failure(self, client, alice):
        """Invalid records are reported without stopping valid ones."""
        response = client.post(
            f"{BASE}/bookmarks",
            json=[{"id": "a", "payload": "1"}, {"id": "", "payload": "2"}, {"id": "c", "payload": "3"}],
            auth=alice,
        )
        assert response.status_code == 200
        result = response.json()
        assert result["success"] == ["a", "c"]
        assert result["failed"] == {"": "invalid id"}

        listed = client.get(f"{BASE}/bookmarks", params={"sort": "index"}, auth=alice).json()
        assert sorted(listed) == ["a", "c"]

    def test_shared_timestamp(self, client, alice):
        """Every record in a batch carries the batch timestamp."""
        result = client.post(
            f"{BASE}/bookmarks",
            json=[{"id": "a", "payload": "1"}, {"id": "b", "payload": "2"}],
            auth=alice,
        ).json()
        records = client.get(f"{BASE}/bookmarks", params={"full": "1"}, auth=alice).json()
        assert {r["modified"] for r in records} == {result["modified"]}

    def test_non_object_and_oversized_fragments(self, client, alice):
        """Fragments that are not objects, or too large, fail individually."""
        result = client.post(
            f"{BASE}/bookmarks",
            json=["nope", {"id": "big", "payload": "x" * 2000}, {"id": "ok", "payload": "y"}],
            auth=alice,
        ).json()
        assert result["success"] == ["ok"]
        assert result["failed"]["big"] == "payload too large"
        assert "" in result["failed"]

    def test_body_must_be_array(self, client, alice):
        """A batch body that is not a JSON array is rejected."""
        response = client.post(f"{BASE}/bookmarks", json={"id": "a"}, auth=alice)
        assert response.status_code == 400
        assert response.json() == "6"

    def test_empty_batch_rejected(self, client, alice):
        """An empty array is not a batch."""
        response = client.post(f"{BASE}/bookmarks", json=[], auth=alice)
        assert response.status_code == 400
        assert response.json() == "6"
        assert client.get(BASE, auth=alice).json() == []

    def test_unencodable_payload_fails_alone(self, client, alice):
        """A lone surrogate in one payload fails that record only."""
        response = client.post(
            f"{BASE}/bookmarks",
            content='[{"id": "a", "payload": "ok"}, {"id": "b", "payload": "\\ud800"}]',
            headers={"Content-Type": "application/json"},
            auth=alice,
        )
        assert response.status_code == 200
        result = response.json()
        assert result["success"] == ["a"]
        assert result["failed"] == {"b": "invalid payload"}
        assert client.get(f"{BASE}/bookmarks", auth=alice).json() == ["a"]

    def test_stale_batch_writes_nothing(self, client, alice, put):
        """A failed precondition rejects the whole batch."""
        written = put("bookmarks/abc", {"payload": "x"}).json()
        response = client.post(
            f"{BASE}/bookmarks",
            json=[{"id": "new", "payload": "1"}],
            headers={"X-If-Unmodified-Since": str(written - 5)},
            auth=alice,
        )
        assert response.status_code == 412
        assert client.get(f"{BASE}/bookmarks", auth=alice).json() == ["abc"]

    def test_custom_collection(self, client, alice):
        """Batches may create collections outside the well-known set."""
        client.post(f"{BASE}/notes", json=[{"id": "n1", "payload": "x"}], auth=alice)
        assert client.get(BASE, auth=alice).json() == ["notes"]


class TestListing:
    """GET on a collection streams ids or full records."""

    @pytest.fixture(autouse=True)
    def records(self, client, alice):
        client.post(
            f"{BASE}/bookmarks",
            json=[
                {"id": "a", "payload": "1", "sortindex": 10, "parentid": "p1"},
                {"id": "b", "payload": "2", "sortindex": 30, "parentid": "p1"},
                {"id": "c", "payload": "3", "sortindex": 20, "parentid": "p2"},
            ],
            auth=alice,
        )

    def test_streamed_as_json(self, client, alice):
        """Listings are JSON arrays."""
        response = client.get(f"{BASE}/bookmarks", auth=alice)
        assert response.headers["content-type"].startswith("application/json")
        assert sorted(response.json()) == ["a", "b", "c"]

    def test_sorted_and_limited(self, client, alice):
        """sort, limit and offset page through the collection."""
        params = {"sort": "index", "limit": "2"}
        assert client.get(f"{BASE}/bookmarks", params=params, auth=alice).json() == ["b", "c"]
        params["offset"] = "2"
        assert client.get(f"{BASE}/bookmarks", params=params, auth=alice).json() == ["a"]

    def test_filters(self, client, alice):
        """Filters narrow the listing."""
        assert sorted(client.get(f"{BASE}/bookmarks", params={"parentid": "p1"}, auth=alice).json()) == ["a", "b"]
        assert client.get(f"{BASE}/bookmarks", params={"ids": "a,c", "index_above": "15"}, auth=alice).json() == ["c"]
        assert client.get(f"{BASE}/bookmarks", params={"index_below": "15"}, auth=alice).json() == ["a"]

    def test_full_records(self, client, alice):
        """full returns the records themselves."""
        records = client.get(f"{BASE}/bookmarks", params={"full": "1", "sort": "index"}, auth=alice).json()
        assert [r["id"] for r in records] == ["b", "c", "a"]
        assert records[0]["payload"] == "2"
        assert records[0]["parentid"] == "p1"

    def test_empty_collection(self, client, alice):
        """Unknown collections list as empty."""
        assert client.get(f"{BASE}/history", auth=alice).json() == []
        assert client.get(f"{BASE}/never-written", auth=alice).json() == []

    def test_bad_filter(self, client, alice):
        """Malformed filter values are bad requests."""
        response = client.get(f"{BASE}/bookmarks", params={"limit": "lots"}, auth=alice)
        assert response.status_code == 400

    @pytest.mark.parametrize(
        "params",
        [
            {"newer": "inf"},
            {"older": "nan"},
            {"limit": "1" + "0" * 30},
            {"offset": "1" + "0" * 30, "limit": "1"},
            {"index_below": "-" + "9" * 30},
        ],
    )
    def test_unrepresentable_filter(self, client, alice, params):
        """Filter values the database cannot bind are bad requests."""
        response = client.get(f"{BASE}/bookmarks", params=params, auth=alice)
        assert response.status_code == 400

    def test_unrepresentable_delete_filter(self, client, alice):
        """Deletes reject the same filters and remove nothing."""
        response = client.delete(f"{BASE}/bookmarks", params={"index_above": "9" * 30}, auth=alice)
        assert response.status_code == 400
        assert len(client.get(f"{BASE}/bookmarks", auth=alice).json()) == 3

    def test_timestamps_and_counts(self, client, alice):
        """The owner listing can carry timestamps or counts."""
        timestamps = client.get(BASE, params={"timestamps": "1"}, auth=alice).json()
        assert set(timestamps) == {"bookmarks"}
        assert timestamps["bookmarks"] > 0
        counts = client.get(BASE, params={"counts": "1"}, auth=alice).json()
        assert counts == {"bookmarks": 3}

    def test_delete_with_filters(self, client, alice):
        """DELETE on a collection removes exactly what the filters list."""
        response = client.delete(f"{BASE}/bookmarks", params={"sort": "index", "limit": "2"}, auth=alice)
        assert response.status_code == 200
        assert client.get(f"{BASE}/bookmarks", auth=alice).json() == ["a"]

    def test_delete_whole_collection(self, client, alice):
        """DELETE without filters empties the collection."""
        client.delete(f"{BASE}/bookmarks", auth=alice)
        assert client.get(BASE, auth=alice).json() == []

    def test_stale_delete_rejected(self, client, alice):
        """Deletes honor X-If-Unmodified-Since."""
        response = client.delete(
            f"{BASE}/bookmarks",
            headers={"X-If-Unmodified-Since": "1.0"},
            auth=alice,
        )
        assert response.status_code == 412
        assert len(client.get(f"{BASE}/bookmarks", auth=alice).json()) == 3


class TestAuthentication:
    """Every request authenticates as the path owner."""

    def test_missing_credentials(self, client):
        """Requests without credentials are challenged."""
        response = client.get(BASE)
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == 'Basic realm="Weave"'

    def test_wrong_password(self, client):
        """A bad password is rejected."""
        response = client.get(BASE, auth=("alice", "wrong"))
        assert response.status_code == 401

    def test_other_users_path(self, client, bob):
        """Users cannot touch another owner's data."""
        response = client.get(BASE, auth=bob)
        assert response.status_code == 401
        assert response.json() == "5"

    def test_alert_header(self, client, alice, users):
        """A per-user alert is passed back on every response."""
        users.set_alert("alice", "maintenance tonight")
        assert client.get(BASE, auth=alice).headers[ALERT_HEADER] == "maintenance tonight"
        assert client.get(f"{BASE}/bookmarks", auth=alice).headers[ALERT_HEADER] == "maintenance tonight"

    def test_no_alert_header_by_default(self, client, alice):
        """No alert header is sent when none is set."""
        assert ALERT_HEADER not in client.get(BASE, auth=alice).headers


class TestProtocolErrors:
    """Malformed requests map to Weave error codes."""

    def test_unparsable_body(self, client, alice):
        """Invalid JSON is code 6."""
        response = client.put(
            f"{BASE}/bookmarks/abc",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
            auth=alice,
        )
        assert response.status_code == 400
        assert response.json() == "6"

    def test_invalid_record(self, put):
        """A record that fails validation is code 8."""
        response = put("bookmarks/abc", {"payload": "x", "sortindex": "high"})
        assert response.status_code == 400
        assert response.json() == "8"

    def test_payload_too_large(self, put):
        """Payloads over the configured limit are code 8."""
        response = put("bookmarks/abc", {"payload": "x" * 2000})
        assert response.status_code == 400
        assert response.json() == "8"

    def test_string_body_is_not_a_record(self, client, alice, put):
        """A body that is a JSON string holding an object is still code 6."""
        response = put("bookmarks/abc", '{"payload": "x"}')
        assert response.status_code == 400
        assert response.json() == "6"
        assert client.get(f"{BASE}/bookmarks", auth=alice).json() == []

    def test_unencodable_payload(self, client, alice):
        """A payload with a lone surrogate is code 8."""
        response = client.put(
            f"{BASE}/bookmarks/abc",
            content='{"payload": "\\udc00"}',
            headers={"Content-Type": "application/json"},
            auth=alice,
        )
        assert response.status_code == 400
        assert response.json() == "8"

    def test_invalid_collection_name(self, client, alice):
        """Collection names are restricted to a safe character set."""
        response = client.get(f"{BASE}/bad$name", auth=alice)
        assert response.status_code == 400

    @pytest.mark.parametrize(
        "method, path",
        [
            ("PATCH", "/bookmarks/abc"),
            ("PATCH", "/bookmarks"),
            ("POST", ""),
            ("PUT", ""),
            ("DELETE", ""),
        ],
    )
    def test_illegal_method(self, client, alice, method, path):
        """Unsupported methods, and writes without a collection, are code 1."""
        response = client.request(method, f"{BASE}{path}", auth=alice)
        assert response.status_code == 400
        assert response.json() == "1"
