"""
Tests for the filesystem storage connector.
"""

import json

import pytest
from unittest.mock import patch

from connectors.errors import InvalidInput, NotFound
from connectors.fs_storage import FsStorage
from utils.schemas import WebsiteDocument, WebsiteMetaContent


def _document() -> WebsiteDocument:
    return WebsiteDocument(
        id="blog",
        name="My blog",
        pages=[
            {"id": "p1", "name": "Home", "frames": [{"component": {"type": "wrapper"}}]},
            {"id": "p2", "name": "About us"},
            {"name": "Draft without id"},
        ],
        styles=[{"selectors": ["body"], "css": "body { margin: 0; }"}],
        assets=[{"path": "assets/logo.png", "type": "image"}],
        settings={"lang": "fr", "head": "<meta name='x'>"},
        fonts=[{"name": "Roboto"}],
    )


class TestDocuments:
    @pytest.mark.asyncio
    async def test_round_trip_preserves_document(self, tmp_path):
        storage = FsStorage(tmp_path)
        doc = _document()

        await storage.write_document("s1", "blog", doc)
        loaded = await storage.read_document("s1", "blog")

        assert loaded == doc

    @pytest.mark.asyncio
    async def test_pages_with_ids_are_split_into_files(self, tmp_path):
        storage = FsStorage(tmp_path)
        await storage.write_document("s1", "blog", _document())

        data = json.loads((tmp_path / "blog" / "website.json").read_text())
        assert data["pages"][0] == {"id": "p1", "name": "Home", "isFile": True}
        assert (tmp_path / "blog" / "pages" / "home-p1.json").exists()
        assert (tmp_path / "blog" / "pages" / "about-us-p2.json").exists()

    @pytest.mark.asyncio
    async def test_removed_pages_leave_no_files(self, tmp_path):
        storage = FsStorage(tmp_path)
        doc = _document()
        await storage.write_document("s1", "blog", doc)

        await storage.write_document("s1", "blog", doc.model_copy(update={"pages": doc.pages[:1]}))

        assert sorted(p.name for p in (tmp_path / "blog" / "pages").iterdir()) == ["home-p1.json"]

    @pytest.mark.asyncio
    async def test_page_with_null_name(self, tmp_path):
        storage = FsStorage(tmp_path)
        doc = WebsiteDocument(id="blog", pages=[{"id": "p1", "name": None, "html": "<p>x</p>"}])

        await storage.write_document("s1", "blog", doc)

        assert (tmp_path / "blog" / "pages" / "page-p1.json").exists()
        assert (await storage.read_document("s1", "blog")).pages == doc.pages

    @pytest.mark.asyncio
    async def test_missing_website(self, tmp_path):
        with pytest.raises(NotFound):
            await FsStorage(tmp_path).read_document("s1", "nope")

    @pytest.mark.asyncio
    async def test_path_traversal_rejected(self, tmp_path):
        storage = FsStorage(tmp_path / "root")
        with pytest.raises(InvalidInput):
            await storage.read_document("s1", "../outside")
        with pytest.raises(InvalidInput):
            await storage.write_asset("s1", "blog/../../evil.txt", b"x")

    @pytest.mark.asyncio
    async def test_init_creates_default_website_once(self, tmp_path):
        storage = FsStorage(tmp_path)
        await storage.init("default")
        first = await storage.read_document("s1", "default")
        assert first.pages == [{"name": "index"}]

        await storage.write_document("s1", "default", _document())
        await storage.init("default")
        assert (await storage.read_document("s1", "default")).name == "My blog"


class TestListingAndDelete:
    @pytest.mark.asyncio
    async def test_list_root_and_website(self, tmp_path):
        storage = FsStorage(tmp_path)
        await storage.write_document("s1", "blog", _document())
        await storage.write_asset("s1", "blog/assets/logo.png", b"png")

        root = await storage.list("s1", "")
        assert [(f.path, f.is_dir) for f in root] == [("blog", True)]

        entries = {f.name: f for f in await storage.list("s1", "blog")}
        assert set(entries) == {"assets", "pages", "website.json"}
        assert entries["website.json"].size > 0
        assert entries["website.json"].last_modified is not None
        assert entries["assets"].is_dir

    @pytest.mark.asyncio
    async def test_delete_website(self, tmp_path):
        storage = FsStorage(tmp_path)
        await storage.write_document("s1", "blog", _document())

        await storage.delete("s1", "blog")

        assert not (tmp_path / "blog").exists()
        with pytest.raises(NotFound):
            await storage.delete("s1", "blog")

    @pytest.mark.asyncio
    async def test_root_cannot_be_deleted(self, tmp_path):
        with pytest.raises(InvalidInput):
            await FsStorage(tmp_path).delete("s1", "")


class TestAssets:
    @pytest.mark.asyncio
    async def test_asset_round_trip(self, tmp_path):
        storage = FsStorage(tmp_path)
        await storage.write_asset("s1", "blog/assets/img/logo.png", b"\x89PNG\r\n")

        assert await storage.read_asset("s1", "blog/assets/img/logo.png") == b"\x89PNG\r\n"
        assert not [p for p in (tmp_path / "blog" / "assets" / "img").iterdir() if p.name.startswith(".")]

    @pytest.mark.asyncio
    async def test_missing_asset(self, tmp_path):
        with pytest.raises(NotFound):
            await FsStorage(tmp_path).read_asset("s1", "blog/assets/none.png")


class TestWebsiteManagement:
    @pytest.mark.asyncio
    async def test_meta_defaults_to_document_name(self, tmp_path):
        storage = FsStorage(tmp_path)
        await storage.write_document("s1", "blog", _document())

        meta = await storage.get_meta("s1", "blog")

        assert meta.website_id == "blog"
        assert meta.name == "My blog"
        assert meta.image_url is None
        assert meta.created_at is not None and meta.updated_at is not None

    @pytest.mark.asyncio
    async def test_set_meta_then_get(self, tmp_path):
        storage = FsStorage(tmp_path)
        await storage.write_document("s1", "blog", _document())

        await storage.set_meta(
            "s1", "blog", WebsiteMetaContent(name="Renamed", image_url="/thumb.png", connector_user_settings={"k": 1})
        )
        meta = await storage.get_meta("s1", "blog")

        assert (meta.name, meta.image_url, meta.connector_user_settings) == ("Renamed", "/thumb.png", {"k": 1})
        assert json.loads((tmp_path / "blog" / "meta.json").read_text())["name"] == "Renamed"

    @pytest.mark.asyncio
    async def test_meta_of_missing_website(self, tmp_path):
        storage = FsStorage(tmp_path)
        with pytest.raises(NotFound):
            await storage.get_meta("s1", "nope")
        with pytest.raises(NotFound):
            await storage.set_meta("s1", "nope", WebsiteMetaContent(name="x"))
        with pytest.raises(InvalidInput):
            await storage.set_meta("s1", "", WebsiteMetaContent(name="x"))

    @pytest.mark.asyncio
    async def test_duplicate(self, tmp_path):
        storage = FsStorage(tmp_path)
        await storage.write_document("s1", "blog", _document())
        await storage.write_asset("s1", "blog/assets/logo.png", b"png")

        new_path = await storage.duplicate("s1", "blog")

        assert new_path != "blog"
        copy = await storage.read_document("s1", new_path)
        assert copy.id == new_path
        assert copy.pages == _document().pages
        assert await storage.read_asset("s1", f"{new_path}/assets/logo.png") == b"png"
        assert (await storage.get_meta("s1", new_path)).name == "My blog copy"
        assert (await storage.get_meta("s1", "blog")).name == "My blog"

    @pytest.mark.asyncio
    async def test_duplicate_missing_website(self, tmp_path):
        with pytest.raises(NotFound):
            await FsStorage(tmp_path).duplicate("s1", "nope")

    @pytest.mark.asyncio
    async def test_local_user(self, tmp_path):
        with patch("connectors.base.getpass.getuser", return_value="alice"):
            user = await FsStorage(tmp_path).get_user("s1")

        assert user.name == "alice"
        assert user.picture == "/assets/laptop.png"
        assert user.connector.connector_id == "fs-storage"
        assert user.connector.is_logged_in
