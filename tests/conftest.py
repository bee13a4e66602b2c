from typing import Dict, Iterable, List, Optional

import pytest
import requests

import site_mirror as sm

ORIGIN = "https://example.com"


def html_page(title: str = "", links: Iterable[str] = (), images: Iterable[str] = ()) -> str:
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links)
    imgs = "".join(f'<img src="{src}">' for src in images)
    return f"<html><head><title>{title}</title></head><body>{anchors}{imgs}</body></html>"


class FakeRenderer(sm.HtmlRenderer):
    """Serves markup from an in-memory site; unknown URLs fail to navigate."""

    def __init__(self, pages: Dict[str, str], failing: Iterable[str] = ()):
        self.pages = pages
        self.failing = set(failing)
        self.calls: List[str] = []
        self.started = False
        self.closed = False

    def start(self) -> None:
        self.started = True

    def render(self, url: str, timeout: float) -> sm.RenderedPage:
        self.calls.append(url)
        if url in self.failing or url not in self.pages:
            raise sm.NavigationError(f"{url}: net::ERR_NAME_NOT_RESOLVED")
        return sm.rendered_from_markup(
            self.pages[url],
            url,
            full_capture=b"\x89PNG full",
            viewport_capture=b"\x89PNG viewport",
        )

    def close(self) -> None:
        self.closed = True


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        body: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
        fail_after_first_chunk: bool = False,
    ):
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
        self.fail_after_first_chunk = fail_after_first_chunk
        self.closed = False

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i : i + chunk_size]
            if self.fail_after_first_chunk:
                raise requests.ConnectionError("connection reset by peer")

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Routes GETs to canned responses; anything unrouted is a 404."""

    def __init__(self, routes: Optional[Dict[str, object]] = None):
        self.routes = dict(routes or {})
        self.requests: List[str] = []

    def get(self, url, timeout=None, stream=False, allow_redirects=True):
        self.requests.append(url)
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404)
        if isinstance(route, Exception):
            raise route
        return route


@pytest.fixture
def settings():
    return sm.Settings(workers=1, settle_delay=0.0)


@pytest.fixture
def image_bytes():
    return b"\xff\xd8\xff\xe0" + b"0" * 2048
