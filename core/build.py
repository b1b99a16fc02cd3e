"""
Default build step: turns a website document into deployable files.

Pure function of the document; the orchestrator accepts any callable with
the same signature.
"""

from __future__ import annotations

import html
import json
from typing import Callable, List

from connectors.errors import InvalidInput
from utils.schemas import ArtifactSet, WebsiteDocument
from utils.validators import clean_relative_path, slugify

BuildStep = Callable[[WebsiteDocument], ArtifactSet]

STYLESHEET = "css/styles.css"

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="{lang}">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
<link rel="stylesheet" href="{stylesheet}">
</head>
<body>
{body}
</body>
</html>
"""


def page_file_names(doc: WebsiteDocument) -> List[str]:
    """``index.html`` for the first page, unique ``<slug>.html`` for the rest."""
    names: List[str] = []
    for position, page in enumerate(doc.pages):
        if position == 0:
            names.append("index.html")
            continue
        base = slugify(str(page.get("name", "")), fallback=f"page-{position}")
        name, suffix = f"{base}.html", 2
        while name in names or name == "index.html":
            name = f"{base}-{suffix}.html"
            suffix += 1
        names.append(name)
    return names


def render_page(doc: WebsiteDocument, page: dict) -> str:
    title = page.get("title") or page.get("name") or doc.name
    return _PAGE_TEMPLATE.format(
        lang=html.escape(str(doc.settings.get("lang", "en"))),
        title=html.escape(str(title)),
        stylesheet=STYLESHEET,
        body=page.get("html", ""),
    )


def build_artifacts(doc: WebsiteDocument) -> ArtifactSet:
    if not doc.pages:
        raise InvalidInput("website has no pages", context={"website": doc.id})

    artifacts = ArtifactSet(document_id=doc.id)
    for name, page in zip(page_file_names(doc), doc.pages):
        artifacts.add(name, render_page(doc, page).encode("utf-8"), "text/html")

    css = "\n".join(str(style["css"]) for style in doc.styles if style.get("css"))
    artifacts.add(STYLESHEET, css.encode("utf-8"), "text/css")

    artifacts.add(
        "website.json",
        json.dumps(doc.model_dump(mode="json"), indent=2, sort_keys=True).encode("utf-8"),
        "application/json",
    )
    return artifacts


def asset_paths(doc: WebsiteDocument) -> List[str]:
    """Relative paths of the assets the built site references, deduplicated."""
    seen: List[str] = []
    for asset in doc.assets:
        path = asset.get("path")
        if not path:
            continue
        path = clean_relative_path(str(path))
        if path not in seen:
            seen.append(path)
    return seen
