"""Integration tests for container handlers.

Requests run through the full app against the per-test FlakyObjectStore
and in-memory metadata store attached by the ``client`` fixture.
"""

from conftest import seed


class TestListContainers:
    """Tests for GET /containers."""

    async def test_empty(self, client):
        resp = await client.get("/containers")
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "containers": []}

    async def test_counts_sizes_and_owner(self, client, store, metadata):
        await seed(store, "photos", ["a.jpg", "b/c.jpg"])
        await seed(store, "internal-assets", ["logo.png"])
        await metadata.set_container_owner("photos", "alice@example.com")

        resp = await client.get("/containers")
        containers = resp.json()["containers"]
        assert [c["name"] for c in containers] == ["photos"]
        entry = containers[0]
        assert entry["owner"] == "alice@example.com"
        assert entry["objectCount"] == 2
        assert entry["sizeBytes"] == len(b"data:a.jpg") + len(b"data:b/c.jpg")
        assert entry["createdAt"]

    async def test_sizes_are_cached_until_refresh(self, client, store):
        await seed(store, "photos", ["a.jpg"])
        await client.get("/containers")
        await store.put("photos", "new.jpg", b"x")

        cached = (await client.get("/containers")).json()["containers"][0]
        assert cached["objectCount"] == 1

        fresh = (await client.get("/containers?refresh=true")).json()["containers"][0]
        assert fresh["objectCount"] == 2


class TestCreateContainer:
    """Tests for POST /containers."""

    async def test_create(self, client, store, metadata):
        resp = await client.post("/containers", json={"name": "photos"})
        assert resp.status_code == 201
        assert resp.json() == {
            "success": True,
            "container": {"name": "photos", "owner": "tester@example.com"},
        }
        assert await store.container_exists("photos")
        assert await metadata.get_container_owner("photos") == "tester@example.com"

    async def test_duplicate(self, client):
        await client.post("/containers", json={"name": "photos"})
        resp = await client.post("/containers", json={"name": "photos"})
        assert resp.status_code == 409
        assert resp.json()["code"] == "Conflict"

        audit = (await client.get("/audit?operationType=bucket_create")).json()["entries"]
        assert [e["status"] for e in audit] == ["failed", "success"]

    async def test_invalid_name(self, client, store):
        resp = await client.post("/containers", json={"name": "Bad_Name"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "ValidationFailure"
        assert store.containers == {}

    async def test_missing_name(self, client):
        resp = await client.post("/containers", json={})
        assert resp.status_code == 400
        assert "name" in resp.json()["error"]

    async def test_empty_body(self, client):
        resp = await client.post("/containers")
        assert resp.status_code == 400


class TestDeleteContainer:
    """Tests for DELETE /containers/{name}."""

    async def test_delete_empty(self, client, store, metadata):
        await client.post("/containers", json={"name": "photos"})
        resp = await client.delete("/containers/photos")
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "container": "photos"}
        assert not await store.container_exists("photos")
        assert await metadata.get_container_owner("photos") is None

    async def test_non_empty_needs_force(self, client, store):
        await seed(store, "photos", ["a.jpg"])
        resp = await client.delete("/containers/photos")
        assert resp.status_code == 409
        assert resp.json()["error"] == "Container is not empty. Use force=true to delete all objects."
        assert await store.container_exists("photos")

    async def test_missing(self, client):
        resp = await client.delete("/containers/ghost")
        assert resp.status_code == 404

    async def test_force(self, client, store):
        await seed(store, "photos", [f"k{i}" for i in range(7)])
        resp = await client.delete("/containers/photos?force=true")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["containerDeleted"] is True
        assert body["enumerated"] == 7
        assert body["succeeded"] == 7
        assert body["jobId"].startswith("bucket_delete-")
        assert not await store.container_exists("photos")

    async def test_force_partial_failure(self, client, store):
        await seed(store, "photos", ["a", "b", "c"])
        store.fail_delete.add("b")
        resp = await client.delete("/containers/photos?force=true")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is False
        assert body["failed"] == 1
        assert body["containerDeleted"] is False
        assert list(store.containers["photos"]) == ["b"]

    async def test_force_listing_failure(self, client, store):
        await seed(store, "photos", ["a"])
        store.fail_list = 1
        resp = await client.delete("/containers/photos?force=true")
        assert resp.status_code == 502
        body = resp.json()
        assert body["code"] == "OperationFailed"
        assert body["details"]["status"] == "failed"
        job = (await client.get(f"/jobs/{body['details']['jobId']}")).json()["job"]
        assert job["status"] == "failed"

    async def test_force_missing(self, client):
        resp = await client.delete("/containers/ghost?force=true")
        assert resp.status_code == 404


class TestRenameContainer:
    """Tests for PATCH /containers/{name}."""

    async def test_rename(self, client, store):
        await seed(store, "photos", ["a.jpg", "b/c.jpg"], content_type="image/jpeg")
        resp = await client.patch("/containers/photos", json={"newName": "pictures"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["containerDeleted"] is True
        assert not await store.container_exists("photos")
        assert sorted(store.containers["pictures"]) == ["a.jpg", "b/c.jpg"]
        assert (await store.get("pictures", "b/c.jpg")).content_type == "image/jpeg"

    async def test_copy_failure_keeps_source(self, client, store):
        await seed(store, "photos", ["a.jpg", "b.jpg"])
        store.fail_get.add("b.jpg")
        resp = await client.patch("/containers/photos", json={"newName": "pictures"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is False
        assert body["skippedTeardown"] is True
        assert sorted(store.containers["photos"]) == ["a.jpg", "b.jpg"]

    async def test_destination_exists(self, client, store):
        await seed(store, "photos", ["a.jpg"])
        await seed(store, "pictures", [])
        resp = await client.patch("/containers/photos", json={"newName": "pictures"})
        assert resp.status_code == 409

    async def test_invalid_new_name(self, client, store):
        await seed(store, "photos", ["a.jpg"])
        resp = await client.patch("/containers/photos", json={"newName": "NO"})
        assert resp.status_code == 400

    async def test_same_name(self, client, store):
        await seed(store, "photos", ["a.jpg"])
        resp = await client.patch("/containers/photos", json={"newName": "photos"})
        assert resp.status_code == 400

    async def test_missing_source(self, client):
        resp = await client.patch("/containers/ghost", json={"newName": "pictures"})
        assert resp.status_code == 404
