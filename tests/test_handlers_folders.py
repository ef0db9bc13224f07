"""Integration tests for folder handlers."""

from conftest import seed


class TestCreateFolder:
    """Tests for POST /containers/{c}/folders."""

    async def test_create_marker(self, client, store):
        await seed(store, "box", [])
        resp = await client.post("/containers/box/folders", json={"folderName": "photos/2024"})
        assert resp.status_code == 201
        assert resp.json() == {"success": True, "folder": "photos/2024/"}
        assert list(store.containers["box"]) == ["photos/2024/.keep"]

        listing = (await client.get("/containers/box/objects?prefix=photos")).json()
        assert listing["folders"] == ["photos/2024"]
        assert listing["objects"] == []

    async def test_invalid_name(self, client, store):
        await seed(store, "box", [])
        resp = await client.post("/containers/box/folders", json={"folderName": "bad name!"})
        assert resp.status_code == 400
        assert store.containers["box"] == {}

    async def test_missing_container(self, client):
        resp = await client.post("/containers/ghost/folders", json={"folderName": "a"})
        assert resp.status_code == 404


class TestRenameFolder:
    """Tests for POST /containers/{c}/folders/rename."""

    async def test_rename(self, client, store):
        await seed(store, "box", ["old/a.txt", "old/sub/b.txt", "other.txt"])
        resp = await client.post(
            "/containers/box/folders/rename", json={"oldPath": "old", "newPath": "new/"}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["succeeded"] == 2
        assert sorted(store.containers["box"]) == ["new/a.txt", "new/sub/b.txt", "other.txt"]

        entries = (await client.get("/audit?operationType=folder_rename")).json()["entries"]
        assert len(entries) == 1
        assert entries[0]["destination_key"] == "new/"

    async def test_rename_into_itself(self, client, store):
        await seed(store, "box", ["old/a.txt"])
        resp = await client.post(
            "/containers/box/folders/rename", json={"oldPath": "old", "newPath": "old/inner"}
        )
        assert resp.status_code == 400
        assert list(store.containers["box"]) == ["old/a.txt"]

    async def test_requires_both_paths(self, client, store):
        await seed(store, "box", [])
        resp = await client.post("/containers/box/folders/rename", json={"oldPath": "old"})
        assert resp.status_code == 400


class TestMoveCopyFolder:
    """Tests for folder move and copy across containers."""

    async def test_move_keeps_path_by_default(self, client, store):
        await seed(store, "box", ["docs/a.txt", "docs/b/c.txt", "keep.txt"])
        await seed(store, "crate", [])
        resp = await client.post("/containers/box/folders/docs/move", json={"destinationContainer": "crate"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["destinationPath"] == "docs/"
        assert sorted(store.containers["crate"]) == ["docs/a.txt", "docs/b/c.txt"]
        assert list(store.containers["box"]) == ["keep.txt"]

        job = (await client.get(f"/jobs/{body['jobId']}")).json()["job"]
        assert job["operation_type"] == "folder_move"
        assert job["status"] == "completed"

    async def test_copy_to_new_path(self, client, store):
        await seed(store, "box", ["docs/a.txt"])
        resp = await client.post(
            "/containers/box/folders/docs/copy",
            json={"destinationContainer": "box", "destinationPath": "archive/docs"},
        )
        assert resp.status_code == 200
        assert sorted(store.containers["box"]) == ["archive/docs/a.txt", "docs/a.txt"]

    async def test_copy_onto_itself(self, client, store):
        await seed(store, "box", ["docs/a.txt"])
        resp = await client.post("/containers/box/folders/docs/copy", json={"destinationContainer": "box"})
        assert resp.status_code == 400

    async def test_missing_destination_container(self, client, store):
        await seed(store, "box", ["docs/a.txt"])
        resp = await client.post("/containers/box/folders/docs/move", json={"destinationContainer": "ghost"})
        assert resp.status_code == 404
        assert list(store.containers["box"]) == ["docs/a.txt"]

    async def test_partial_failure(self, client, store):
        await seed(store, "box", ["docs/a.txt", "docs/b.txt"])
        await seed(store, "crate", [])
        store.fail_put.add("docs/b.txt")
        resp = await client.post("/containers/box/folders/docs/move", json={"destinationContainer": "crate"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is False
        assert body["failed"] == 1
        assert list(store.containers["box"]) == ["docs/b.txt"]


class TestDeleteFolder:
    """Tests for DELETE /containers/{c}/folders/{path}."""

    async def test_confirm_then_force(self, client, store):
        await seed(store, "box", ["docs/a.txt", "docs/b/c.txt", "docs/.keep", "other.txt"])
        resp = await client.delete("/containers/box/folders/docs")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is False
        assert body["fileCount"] == 3
        assert len(store.containers["box"]) == 4

        resp = await client.delete("/containers/box/folders/docs?force=true")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["succeeded"] == 3
        assert list(store.containers["box"]) == ["other.txt"]

    async def test_empty_folder_deletes_without_force(self, client, store):
        await seed(store, "box", ["other.txt"])
        resp = await client.delete("/containers/box/folders/nothing-here")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["enumerated"] == 0
