"""
FsStorage — stores websites on the local filesystem.

Layout under ``data_path``::

    {website_id}/
        website.json        document with page references
        meta.json           name, image and per-user settings
        pages/              one JSON file per page that has an id
            home-abc123.json
        assets/
            logo.png

No authentication: every session is logged in.  All file IO runs in a
worker thread through ``asyncio.to_thread`` so the event loop never blocks.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Tuple

from connectors.base import NoAuthMixin, StorageConnector
from connectors.errors import Internal, InvalidInput, NotFound
from utils.schemas import ConnectorKind, FileInfo, WebsiteDocument, WebsiteMeta, WebsiteMetaContent
from utils.validators import slugify

logger = logging.getLogger(__name__)

WEBSITE_DATA_FILE = "website.json"
META_FILE = "meta.json"
DEFAULT_PAGES_FOLDER = "pages"


def _dump_json(data: Any) -> str:
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False)


def _atomic_write(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(content)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class FsStorage(NoAuthMixin, StorageConnector):
    """Storage connector backed by a local directory tree."""

    def __init__(self, data_path: str | Path) -> None:
        self.root = Path(data_path).resolve()

    @property
    def connector_id(self) -> str:
        return "fs-storage"

    @property
    def kind(self) -> ConnectorKind:
        return ConnectorKind.FS

    @property
    def display_name(self) -> str:
        return "File system storage"

    @property
    def icon(self) -> str:
        return "/assets/laptop.png"

    @property
    def background(self) -> str:
        return "#ffffff"

    @property
    def color(self) -> str:
        return "#000000"

    # ── Paths ───────────────────────────────────────────────────────────

    def resolve(self, path: str) -> Path:
        """Map a connector path onto the data directory, refusing escapes."""
        target = (self.root / path.strip("/")).resolve()
        if target != self.root and self.root not in target.parents:
            raise InvalidInput(f"path escapes storage root: {path}")
        return target

    async def init(self, default_website_id: str) -> None:
        """Create the data directory and a default website on first run."""
        website = self.resolve(default_website_id)
        if await asyncio.to_thread(website.exists):
            return
        await self.write_document("", default_website_id, WebsiteDocument.empty(default_website_id, "Default website"))
        logger.info("Created default website '%s' in %s", default_website_id, self.root)

    # ── Listing ─────────────────────────────────────────────────────────

    async def list(self, session_id: str, path: str) -> List[FileInfo]:
        directory = self.resolve(path)
        return await asyncio.to_thread(self._list_sync, directory, path.strip("/"))

    def _list_sync(self, directory: Path, prefix: str) -> List[FileInfo]:
        if not directory.is_dir():
            raise NotFound(prefix or "/")
        entries = []
        for entry in sorted(directory.iterdir(), key=lambda p: p.name):
            if entry.name.startswith("."):
                continue
            stat = entry.stat()
            entries.append(
                FileInfo(
                    path=f"{prefix}/{entry.name}" if prefix else entry.name,
                    name=entry.name,
                    is_dir=entry.is_dir(),
                    size=None if entry.is_dir() else stat.st_size,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        return entries

    # ── Documents ───────────────────────────────────────────────────────

    async def read_document(self, session_id: str, path: str) -> WebsiteDocument:
        website = self.resolve(path)
        return await asyncio.to_thread(self._read_sync, website, path.strip("/"))

    def _read_sync(self, website: Path, path: str) -> WebsiteDocument:
        data_file = website / WEBSITE_DATA_FILE
        try:
            raw = json.loads(data_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise NotFound(f"website '{path}'") from None
        except json.JSONDecodeError as exc:
            raise Internal(f"corrupt {WEBSITE_DATA_FILE} in '{path}': {exc}") from exc

        pages_folder = raw.pop("pagesFolder", DEFAULT_PAGES_FOLDER)
        pages = []
        for ref in raw.get("pages", []):
            if not ref.get("isFile"):
                pages.append(ref)
                continue
            page_file = website / pages_folder / f"{slugify(str(ref.get('name') or 'page'))}-{ref.get('id', '')}.json"
            try:
                pages.append(json.loads(page_file.read_text(encoding="utf-8")))
            except FileNotFoundError:
                logger.warning("Could not load page file %s", page_file)
                pages.append({k: v for k, v in ref.items() if k != "isFile"})
        raw["pages"] = pages
        raw.setdefault("id", website.name)
        return WebsiteDocument.model_validate(raw)

    async def write_document(self, session_id: str, path: str, doc: WebsiteDocument) -> None:
        website = self.resolve(path)
        if website == self.root:
            raise InvalidInput("cannot write a document at the storage root")
        await asyncio.to_thread(self._write_sync, website, doc)
        logger.debug("Wrote website %s (%d pages)", path, len(doc.pages))

    def _write_sync(self, website: Path, doc: WebsiteDocument) -> None:
        files, page_files = self._split(doc)
        website.mkdir(parents=True, exist_ok=True)
        pages_dir = website / DEFAULT_PAGES_FOLDER
        for name, content in files:
            _atomic_write(website / name, content.encode("utf-8"))
        # Drop page files of pages that no longer exist
        if pages_dir.is_dir():
            for stale in pages_dir.glob("*.json"):
                if stale.name not in page_files:
                    stale.unlink()

    @staticmethod
    def _split(doc: WebsiteDocument) -> Tuple[List[Tuple[str, str]], set]:
        """Return (relative path, content) pairs and the set of page file names."""
        files: List[Tuple[str, str]] = []
        page_files = set()
        refs: List[Dict[str, Any]] = []
        for page in doc.pages:
            page_id = page.get("id")
            if not page_id:
                refs.append(page)
                continue
            name = page.get("name")
            file_name = f"{slugify(str(name or 'page'))}-{page_id}.json"
            page_files.add(file_name)
            files.append((f"{DEFAULT_PAGES_FOLDER}/{file_name}", _dump_json(page)))
            refs.append({"name": name, "id": page_id, "isFile": True})

        data = doc.model_dump(mode="json")
        data["pages"] = refs
        data["pagesFolder"] = DEFAULT_PAGES_FOLDER
        files.append((WEBSITE_DATA_FILE, _dump_json(data)))
        return files, page_files

    async def delete(self, session_id: str, path: str) -> None:
        target = self.resolve(path)
        if target == self.root:
            raise InvalidInput("cannot delete the storage root")
        await asyncio.to_thread(self._delete_sync, target, path)
        logger.info("Deleted %s", path)

    @staticmethod
    def _delete_sync(target: Path, path: str) -> None:
        if target.is_dir():
            shutil.rmtree(target)
        elif target.exists():
            target.unlink()
        else:
            raise NotFound(path)

    # ── Assets ──────────────────────────────────────────────────────────

    async def read_asset(self, session_id: str, path: str) -> bytes:
        target = self.resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except (FileNotFoundError, IsADirectoryError):
            raise NotFound(f"asset '{path}'") from None

    async def write_asset(self, session_id: str, path: str, content: bytes) -> None:
        target = self.resolve(path)
        if target == self.root:
            raise InvalidInput("asset path is empty")
        await asyncio.to_thread(_atomic_write, target, content)

    # ── Website management ──────────────────────────────────────────────

    def _website_dir(self, path: str) -> Path:
        website = self.resolve(path)
        if website == self.root:
            raise InvalidInput("path must name a website")
        return website

    async def get_meta(self, session_id: str, path: str) -> WebsiteMeta:
        website = self._website_dir(path)
        return await asyncio.to_thread(self._get_meta_sync, website, path.strip("/"))

    def _get_meta_sync(self, website: Path, path: str) -> WebsiteMeta:
        if not website.is_dir():
            raise NotFound(f"website '{path}'")
        try:
            content = json.loads((website / META_FILE).read_text(encoding="utf-8"))
        except FileNotFoundError:
            content = {}
        except json.JSONDecodeError as exc:
            raise Internal(f"corrupt {META_FILE} in '{path}': {exc}") from exc
        if not content.get("name"):
            try:
                content["name"] = json.loads((website / WEBSITE_DATA_FILE).read_text(encoding="utf-8")).get("name")
            except (FileNotFoundError, json.JSONDecodeError):
                content["name"] = None
            content["name"] = content["name"] or website.name

        stat = website.stat()
        created = getattr(stat, "st_birthtime", stat.st_ctime)
        return WebsiteMeta(
            website_id=website.name,
            created_at=datetime.fromtimestamp(created, tz=timezone.utc),
            updated_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            **WebsiteMetaContent.model_validate(content).model_dump(),
        )

    async def set_meta(self, session_id: str, path: str, meta: WebsiteMetaContent) -> None:
        website = self._website_dir(path)
        if not await asyncio.to_thread(website.is_dir):
            raise NotFound(f"website '{path}'")
        await asyncio.to_thread(_atomic_write, website / META_FILE, _dump_json(meta.model_dump(mode="json")).encode("utf-8"))

    async def duplicate(self, session_id: str, path: str) -> str:
        source = self._website_dir(path)
        meta = await self.get_meta(session_id, path)
        new_id = uuid.uuid4().hex
        target = source.parent / new_id
        await asyncio.to_thread(self._duplicate_sync, source, target, meta)

        new_path = str(target.relative_to(self.root))
        logger.info("Duplicated website %s to %s", path, new_path)
        return new_path

    @staticmethod
    def _duplicate_sync(source: Path, target: Path, meta: WebsiteMeta) -> None:
        shutil.copytree(source, target)
        data_file = target / WEBSITE_DATA_FILE
        if data_file.exists():
            data = json.loads(data_file.read_text(encoding="utf-8"))
            data["id"] = target.name
            _atomic_write(data_file, _dump_json(data).encode("utf-8"))
        content = WebsiteMetaContent(
            name=f"{meta.name} copy",
            image_url=meta.image_url,
            connector_user_settings=meta.connector_user_settings,
        )
        _atomic_write(target / META_FILE, _dump_json(content.model_dump(mode="json")).encode("utf-8"))
