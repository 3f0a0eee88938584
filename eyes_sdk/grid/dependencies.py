"""Discover the URLs a fetched CSS or SVG resource depends on."""

from __future__ import annotations

import re
from urllib.parse import urljoin

_CSS_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_CSS_IMPORT = re.compile(r"""@import\s+(?:url\(\s*)?["']?([^"')\s;]+)["']?""", re.IGNORECASE)
_CSS_URL = re.compile(r"""url\(\s*(["']?)(.*?)\1\s*\)""", re.IGNORECASE)
_SVG_HREF = re.compile(r"""(?:xlink:)?href\s*=\s*(["'])(.*?)\1""", re.IGNORECASE)


def _keep(url: str) -> bool:
    url = url.strip()
    return bool(url) and not url.startswith(("data:", "#", "javascript:", "about:"))


def _unique(urls: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered = []
    for url in urls:
        if url not in seen:
            seen.add(url)
            ordered.append(url)
    return ordered


def extract_css_dependency_urls(css: str) -> list[str]:
    css = _CSS_COMMENT.sub("", css)
    urls = [m.group(1) for m in _CSS_IMPORT.finditer(css)]
    urls += [m.group(2) for m in _CSS_URL.finditer(css)]
    return _unique([u.strip() for u in urls if _keep(u)])


def extract_svg_dependency_urls(svg: str) -> list[str]:
    urls = [m.group(2) for m in _SVG_HREF.finditer(svg)]
    # inline <style> blocks may pull in fonts and images as well
    urls += extract_css_dependency_urls(svg)
    return _unique([u.strip() for u in urls if _keep(u)])


def dependency_kind(content_type: str | None) -> str | None:
    if not content_type:
        return None
    if "text/css" in content_type:
        return "css"
    if "image/svg" in content_type:
        return "svg"
    return None


def absolutize(url: str, base: str) -> str:
    return urljoin(base, url)


def extract_dependency_urls(value: bytes, content_type: str | None, base_url: str) -> list[str]:
    """Absolute dependency URLs of a resource, without self references."""
    kind = dependency_kind(content_type)
    if kind is None:
        return []
    text = value.decode("utf-8", errors="replace")
    found = extract_css_dependency_urls(text) if kind == "css" else extract_svg_dependency_urls(text)
    urls = []
    for url in found:
        absolute = absolutize(url, base_url)
        if absolute != base_url:
            urls.append(absolute)
    return _unique(urls)
