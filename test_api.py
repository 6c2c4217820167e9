"""
HTTP API tests using FastAPI's TestClient.
"""

import threading

import pytest
from fastapi.testclient import TestClient

from alertboard.api import StreamingSink, create_app
from alertboard.memory import MemoryAlertStore
from alertboard.models import Alert


@pytest.fixture
def client(store):
    return TestClient(create_app(store))


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_post_and_get_alert(client):
    response = client.post("/alerts", json={"ID": "x1", "Summary": "cpu hot"})
    assert response.status_code == 201
    assert response.json() == {"id": "x1", "status": "stored"}

    response = client.get("/alerts/x1")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json"
    document = response.json()
    assert document["Status"] == "Open"
    assert document["Summary"] == "cpu hot"
    assert document["Time"]


def test_post_rejects_empty_id(client):
    response = client.post("/alerts", json={"ID": "", "Status": "Open"})

    assert response.status_code == 400


def test_post_requires_id(client):
    response = client.post("/alerts", json={"Status": "Open"})

    assert response.status_code == 422


def test_get_unknown_alert_is_404(client):
    assert client.get("/alerts/missing").status_code == 404


def test_alert_ids_may_contain_slashes(client):
    client.post("/alerts", json={"ID": "team/db/1"})

    assert client.get("/alerts/team/db/1").json()["ID"] == "team/db/1"


def test_delete_alert(client):
    client.post("/alerts", json={"ID": "x1"})

    assert client.delete("/alerts/x1").status_code == 204
    assert client.get("/alerts/x1").status_code == 404
    assert client.delete("/alerts/x1").status_code == 204


def test_list_alerts_by_prefix(client):
    for alert_id in ("b1", "a2", "a1"):
        client.post("/alerts", json={"ID": alert_id})

    response = client.get("/alerts", params={"prefix": "a"})
    assert response.status_code == 200
    assert response.headers["x-total-count"] == "2"
    assert [alert["ID"] for alert in response.json()] == ["a1", "a2"]

    response = client.get("/alerts")
    assert response.headers["x-total-count"] == "3"

    response = client.get("/alerts", params={"prefix": "z"})
    assert response.json() == []
    assert response.headers["x-total-count"] == "0"


def test_list_alerts_partial_failure(client, store, write_raw):
    client.post("/alerts", json={"ID": "a1"})
    write_raw(store, "a2", b"garbage")

    response = client.get("/alerts", params={"prefix": "a"})

    assert response.status_code == 500
    body = response.json()
    assert body["count"] == 1
    assert [alert["ID"] for alert in body["alerts"]] == ["a1"]


def test_backup_download(client):
    client.post("/alerts", json={"ID": "a1"})

    response = client.get("/backup")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/octet-stream"
    assert response.headers["content-disposition"] == 'attachment; filename="alertboard.db"'
    assert int(response.headers["content-length"]) == len(response.content)


def test_backup_of_sqlite_store_is_database_image(sqlite_store):
    client = TestClient(create_app(sqlite_store))
    client.post("/alerts", json={"ID": "a1"})

    response = client.get("/backup")

    assert response.content.startswith(b"SQLite format 3\x00")


def test_backup_failure_is_500():
    store = MemoryAlertStore()
    client = TestClient(create_app(store))
    store.close()

    response = client.get("/backup")

    assert response.status_code == 500


def test_backup_streams_with_bounded_buffer(sqlite_store):
    for i in range(200):
        sqlite_store.put_alert(Alert(ID=f"s{i:04d}", Summary="y" * 500))

    sink = StreamingSink(max_chunks=2)
    producer = threading.Thread(target=sink.run, args=(sqlite_store,))
    producer.start()
    assert sink.wait_for_headers(timeout=10)

    chunks = sink.iter_chunks()
    first = next(chunks)
    assert len(first) == sqlite_store.chunk_size
    assert sink.buffered <= 2

    body = first + b"".join(chunks)
    producer.join(timeout=10)

    assert not producer.is_alive()
    assert sink.error is None
    assert len(body) == int(sink.headers["Content-Length"])


def test_backup_stops_when_reader_goes_away(sqlite_store):
    for i in range(200):
        sqlite_store.put_alert(Alert(ID=f"s{i:04d}", Summary="y" * 500))

    sink = StreamingSink(max_chunks=1)
    producer = threading.Thread(target=sink.run, args=(sqlite_store,))
    producer.start()
    assert sink.wait_for_headers(timeout=10)

    chunks = sink.iter_chunks()
    next(chunks)
    chunks.close()
    producer.join(timeout=10)

    assert not producer.is_alive()
    assert sink.status_code == 500
    assert sink.error


def test_backup_failure_after_headers_aborts_stream():
    class HalfwayStore:
        def backup(self, sink):
            sink.set_header("Content-Length", "6")
            sink.write(b"abc")
            sink.fail(500, "disk gone")

    sink = StreamingSink()
    producer = threading.Thread(target=sink.run, args=(HalfwayStore(),))
    producer.start()
    assert sink.wait_for_headers(timeout=10)

    chunks = sink.iter_chunks()
    assert next(chunks) == b"abc"
    with pytest.raises(RuntimeError, match="disk gone"):
        next(chunks)
    producer.join(timeout=10)
