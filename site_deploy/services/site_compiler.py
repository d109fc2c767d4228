from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from site_deploy.db.models import Page, Site
from site_deploy.services.errors import CompilationError

HTML_CONTENT_TYPE = "text/html; charset=utf-8"
CSS_CONTENT_TYPE = "text/css; charset=utf-8"
JS_CONTENT_TYPE = "application/javascript; charset=utf-8"

ROOT_DOCUMENT = "index.html"
STYLES_FILE = "styles.css"
SCRIPT_FILE = "script.js"

_PAGE_SLUG_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?$")
_BASE_CSS = (
    "*,*::before,*::after{box-sizing:border-box}"
    "body{margin:0;font-family:system-ui,sans-serif;line-height:1.5}"
    "main{max-width:960px;margin:0 auto;padding:2rem 1rem}"
    "img{max-width:100%;height:auto}"
    ".btn{display:inline-block;padding:.6rem 1.2rem;border-radius:6px;text-decoration:none}"
)


@dataclass(frozen=True)
class CompiledPage:
    html: str
    css: str
    js: str


@dataclass(frozen=True)
class SiteFile:
    path: str
    content: bytes
    content_type: str


PageCompiler = Callable[[Site, Page], CompiledPage]


def _render_block(block: dict[str, Any]) -> str:
    kind = block.get("type")
    props = block.get("props") if isinstance(block.get("props"), dict) else {}
    if kind == "Heading":
        level = props.get("level", 2)
        if not isinstance(level, int) or not 1 <= level <= 6:
            level = 2
        return f"<h{level}>{html.escape(str(props.get('text') or ''))}</h{level}>"
    if kind == "Text":
        return f"<p>{html.escape(str(props.get('text') or ''))}</p>"
    if kind == "Image":
        src = html.escape(str(props.get("src") or ""), quote=True)
        alt = html.escape(str(props.get("alt") or ""), quote=True)
        if not src:
            raise ValueError("Image block requires props.src")
        return f'<img src="{src}" alt="{alt}" loading="lazy" />'
    if kind == "Button":
        href = html.escape(str(props.get("href") or "#"), quote=True)
        label = html.escape(str(props.get("label") or ""))
        return f'<a class="btn" href="{href}">{label}</a>'
    raise ValueError(f"Unsupported block type: {kind!r}")


def render_page(site: Site, page: Page) -> CompiledPage:
    """Default static renderer: page.content = {"blocks": [...], "css": str, "js": str}."""
    content = page.content if isinstance(page.content, dict) else {}
    blocks = content.get("blocks") or []
    if not isinstance(blocks, list):
        raise ValueError(f"Page '{page.slug}' blocks must be a list")
    body = "\n".join(_render_block(block) for block in blocks if isinstance(block, dict))
    title = html.escape(f"{page.title} | {site.name}" if page.title else site.name)
    document = (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        '  <meta charset="utf-8" />\n'
        '  <meta name="viewport" content="width=device-width, initial-scale=1" />\n'
        f"  <title>{title}</title>\n"
        f'  <link rel="stylesheet" href="{STYLES_FILE}" />\n'
        "</head>\n"
        "<body>\n"
        f"<main>\n{body}\n</main>\n"
        f'<script src="{SCRIPT_FILE}"></script>\n'
        "</body>\n"
        "</html>\n"
    )
    css = _BASE_CSS + str(content.get("css") or "")
    js = str(content.get("js") or "")
    return CompiledPage(html=document, css=css, js=js)


def resolve_home_page(pages: list[Page]) -> Optional[Page]:
    for page in pages:
        if page.is_home:
            return page
    return pages[0] if pages else None


def build_site_files(site: Site, pages: list[Page], compiler: PageCompiler) -> list[SiteFile]:
    """
    Compile every page into the deployment's flat file list.

    The home page lives at the prefix root; every other page under `{slug}/`.
    Each page directory carries its own index.html, styles.css and script.js.
    """
    if not pages:
        raise CompilationError("Site has no published pages to deploy.")
    home = resolve_home_page(pages)
    files: list[SiteFile] = []
    seen_dirs: set[str] = set()
    for page in pages:
        if page is home:
            directory = ""
        else:
            slug = (page.slug or "").strip().lower()
            if not _PAGE_SLUG_RE.match(slug):
                raise CompilationError(f"Page slug '{page.slug}' cannot be used as a path.")
            directory = f"{slug}/"
        if directory in seen_dirs:
            raise CompilationError(f"Two pages compile to the same path '{directory or '/'}'.")
        seen_dirs.add(directory)

        try:
            compiled = compiler(site, page)
        except CompilationError:
            raise
        except Exception as exc:
            raise CompilationError(f"Failed to compile page '{page.slug}': {exc}") from exc

        files.append(SiteFile(f"{directory}{ROOT_DOCUMENT}", compiled.html.encode("utf-8"), HTML_CONTENT_TYPE))
        files.append(SiteFile(f"{directory}{STYLES_FILE}", compiled.css.encode("utf-8"), CSS_CONTENT_TYPE))
        files.append(SiteFile(f"{directory}{SCRIPT_FILE}", compiled.js.encode("utf-8"), JS_CONTENT_TYPE))
    return files


def snapshot_content(site: Site, pages: list[Page]) -> dict[str, Any]:
    home = resolve_home_page(pages)
    return {
        "site": {"id": str(site.id), "slug": site.slug, "name": site.name},
        "pages": [
            {
                "id": str(page.id),
                "slug": page.slug,
                "title": page.title,
                "isHome": page is home,
                "content": page.content,
            }
            for page in pages
        ],
    }
