"""Unit tests for dependency discovery (eyes_sdk.grid.dependencies).

Tests cover:
- CSS @import and url() references, comments ignored
- SVG href / xlink:href plus inline styles
- data:, fragment and self references dropped
- Content types without dependencies
"""

from __future__ import annotations

import pytest

from eyes_sdk.grid.dependencies import (
    dependency_kind,
    extract_css_dependency_urls,
    extract_dependency_urls,
    extract_svg_dependency_urls,
)

BASE = "https://shop.test/css/main.css"


class TestCssDependencies:
    @pytest.mark.unit
    def test_imports_and_urls(self):
        css = """
            @import "reset.css";
            @import url('theme.css');
            body { background: url(../img/bg.png); }
            .icon { background: url("data:image/png;base64,AAAA"); }
        """
        assert extract_css_dependency_urls(css) == ["reset.css", "theme.css", "../img/bg.png"]

    @pytest.mark.unit
    def test_comments_are_ignored(self):
        css = "/* url(ghost.png) */ a { background: url(real.png) }"
        assert extract_css_dependency_urls(css) == ["real.png"]

    @pytest.mark.unit
    def test_duplicates_collapse(self):
        css = "a{background:url(x.png)} b{background:url(x.png)}"
        assert extract_css_dependency_urls(css) == ["x.png"]


class TestSvgDependencies:
    @pytest.mark.unit
    def test_hrefs_and_inline_style(self):
        svg = """
            <svg xmlns:xlink="http://www.w3.org/1999/xlink">
              <style>.a { fill: url(pattern.svg) }</style>
              <image xlink:href="photo.jpg"/>
              <use href="#local"/>
            </svg>
        """
        assert extract_svg_dependency_urls(svg) == ["photo.jpg", "pattern.svg"]


class TestExtractDependencyUrls:
    @pytest.mark.unit
    def test_urls_are_absolutized(self):
        css = b"@import 'fonts.css'; body { background: url(/img/bg.png) }"
        urls = extract_dependency_urls(css, "text/css; charset=utf-8", BASE)
        assert urls == ["https://shop.test/css/fonts.css", "https://shop.test/img/bg.png"]

    @pytest.mark.unit
    def test_self_reference_is_dropped(self):
        css = b"a { background: url(main.css) }"
        assert extract_dependency_urls(css, "text/css", BASE) == []

    @pytest.mark.unit
    def test_other_content_types_have_none(self):
        assert extract_dependency_urls(b"url(x.png)", "text/html", BASE) == []
        assert extract_dependency_urls(b"url(x.png)", None, BASE) == []

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "content_type,kind",
        [("text/css", "css"), ("image/svg+xml", "svg"), ("image/png", None), (None, None)],
    )
    def test_dependency_kind(self, content_type, kind):
        assert dependency_kind(content_type) == kind
