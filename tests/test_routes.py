import asyncio

import pytest
from fastapi.testclient import TestClient

from app import routes
from app.config import settings
from app.main_app import app
from app.upload.progress_store import hash_file

from fakes import FakeCatalog, make_listing, sheet_bytes

AUTH = (settings.ADMIN_USER, settings.ADMIN_PASS)

NEW_MUG = sheet_bytes([{"listing_id": 0, "title": "New Mug", "description": "Ceramic", "price": "12.50"}])


@pytest.fixture
def catalog():
    return FakeCatalog([make_listing(555, title="Old Mug"), make_listing(11)])


@pytest.fixture
def client(catalog, store):
    app.dependency_overrides[routes.get_catalog_client] = lambda: catalog
    app.dependency_overrides[routes.get_progress_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def _upload(content, name="listings.csv"):
    return {"file": (name, content, "text/csv")}


def test_requires_admin(client):
    assert client.post("/api/upload/preview", files=_upload(NEW_MUG)).status_code == 401
    assert client.get("/api/upload/progress", auth=("admin", "wrong")).status_code == 401


def test_preview(client):
    r = client.post("/api/upload/preview", files=_upload(NEW_MUG), auth=AUTH)
    assert r.status_code == 200
    body = r.json()
    assert body["summary"]["creates"] == 1
    assert body["changes"][0]["change_id"] == "change_1"
    assert body["file_hash"] == hash_file(NEW_MUG)


def test_unparseable_upload_is_a_bad_request(client):
    r = client.post("/api/upload/preview", files=_upload(b"a,b,c\r\n1,2,3\r\n"), auth=AUTH)
    assert r.status_code == 400
    assert "header row" in r.json()["detail"]

    r = client.post("/api/upload/preview", files=_upload(b""), auth=AUTH)
    assert r.status_code == 400


def test_blocking_apply(client, catalog):
    r = client.post(
        "/api/upload/apply",
        files=_upload(NEW_MUG),
        data={"accepted_change_ids": '["change_1"]', "blocking": "true"},
        auth=AUTH,
    )
    assert r.status_code == 200
    body = r.json()
    assert body["created_listing_ids"] == [9001]
    assert body["failed_listings"] == []
    assert [c[0] for c in catalog.calls if c[0] in ("create", "inventory")] == ["create", "inventory"]

    audit = client.get("/api/audit", params={"listing_id": 9001}, auth=AUTH).json()["entries"]
    assert [e["action"] for e in audit] == ["create", "inventory"]


def test_apply_needs_accepted_ids(client):
    r = client.post("/api/upload/apply", files=_upload(NEW_MUG), data={"blocking": "true"}, auth=AUTH)
    assert r.status_code == 400


def test_apply_without_create_defaults_is_unprocessable(client, catalog):
    catalog.sample = make_listing(1, taxonomy_id=None)
    r = client.post(
        "/api/upload/apply",
        files=_upload(NEW_MUG),
        data={"accepted_change_ids": "change_1", "blocking": "true"},
        auth=AUTH,
    )
    assert r.status_code == 422


def test_apply_as_background_job(client):
    r = client.post(
        "/api/upload/apply",
        files=_upload(NEW_MUG),
        data={"accepted_change_ids": "change_1"},
        auth=AUTH,
    )
    assert r.status_code == 202
    job_id = r.json()["job_id"]
    assert r.headers["location"] == f"/api/upload/jobs/{job_id}"
    assert client.get(f"/api/upload/jobs/{job_id}", auth=AUTH).status_code == 200
    assert client.get("/api/upload/jobs/nope", auth=AUTH).status_code == 404


def test_job_runner_records_result(store):
    catalog = FakeCatalog()
    routes._JOBS["job-1"] = {"id": "job-1", "status": "queued", "started": None, "finished": None}
    asyncio.run(routes._run_apply_job("job-1", NEW_MUG, ["change_1"], "listings.csv", catalog, store))
    job = routes._JOBS.pop("job-1")
    assert job["status"] == "done"
    assert job["progress"] == {"processed": 1, "total": 1, "failed": 0}
    assert job["result"]["created_listing_ids"] == [9001]


def test_export(client):
    r = client.get("/api/listings/export", auth=AUTH)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert "attachment" in r.headers["content-disposition"]
    assert "Old Mug" in r.text


def test_progress_routes(client, store):
    assert client.get("/api/upload/progress/unknown", auth=AUTH).status_code == 404

    catalog = FakeCatalog()
    catalog.fail_inventory.add(9001)
    client.app.dependency_overrides[routes.get_catalog_client] = lambda: catalog
    client.post(
        "/api/upload/apply",
        files=_upload(NEW_MUG),
        data={"accepted_change_ids": "change_1", "blocking": "true"},
        auth=AUTH,
    )
    file_hash = hash_file(NEW_MUG)
    r = client.get(f"/api/upload/progress/{file_hash}", auth=AUTH)
    assert r.status_code == 200
    assert r.json()["failed_listings"][0]["listing_id"] == 9001
    assert [p["file_hash"] for p in client.get("/api/upload/progress", auth=AUTH).json()["progress"]] == [file_hash]

    assert client.delete(f"/api/upload/progress/{file_hash}", auth=AUTH).json() == {"removed": True}
    assert client.post("/api/upload/progress/cleanup", auth=AUTH).json() == {"removed": 0}


def test_backup(client, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "BACKUP_DIR", str(tmp_path))
    sheet = sheet_bytes([{"listing_id": 555, "sku": "DELETE"}])
    r = client.post(
        "/api/upload/backup",
        files=_upload(sheet),
        data={"accepted_change_ids": "change_1"},
        auth=AUTH,
    )
    assert r.status_code == 200
    assert r.json()["listing_count"] == 1
    assert list(tmp_path.glob("listings-backup-before-changes-*.csv"))
