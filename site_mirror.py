#!/usr/bin/env python3
import argparse
import html
import json
import logging
import os
import re
import sys
import tempfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from http.cookiejar import DefaultCookiePolicy
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union
from urllib.parse import parse_qsl, urldefrag, urlencode, urljoin, urlparse, urlunparse

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# -------------------- Config --------------------

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_HEADERS = {"User-Agent": USER_AGENT}

CSS_URL_RE = re.compile(r"url\(\s*([\"']?)([^)\"']+)\1\s*\)", re.IGNORECASE)
SRCSET_SPLIT_RE = re.compile(r"\s*,\s*")
WS_RE = re.compile(r"\s+")
UNSAFE_FILENAME_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]")

TRACKING_PARAM_PREFIXES = (
    "utm_",
    "gclid",
    "fbclid",
    "mc_",
    "yclid",
    "icid",
    "cmpid",
)
SKIPPED_REF_PREFIXES = ("#", "mailto:", "tel:", "javascript:", "data:", "blob:")
DEFAULT_ASSET_PATH_MARKERS = ("uploads", "wp-content")
REDIRECT_STATUSES = {301, 302, 303, 307, 308}

SENTINEL_FILENAME = "unknown"
RESERVED_SLUGS = {"index"}
IMAGES_DIRNAME = "images"
MANIFEST_NAME = "_manifest.json"
SUMMARY_NAME = "summary.json"
INDEX_NAME = "index.html"
INDEX_IMAGE_LIMIT = 50

# Computed background images only exist inside a live page.
BACKGROUND_IMAGES_JS = r"""
() => {
  const found = new Set();
  for (const el of document.querySelectorAll('*')) {
    const bg = getComputedStyle(el).backgroundImage;
    if (!bg || bg === 'none') continue;
    for (const m of bg.matchAll(/url\(["']?([^"')]+)["']?\)/g)) found.add(m[1]);
  }
  return Array.from(found);
}
"""

# -------------------- Settings --------------------


@dataclass
class Settings:
    # Crawl
    max_depth: int = 2
    max_pages: int = 30
    seed_paths: List[str] = field(default_factory=list)
    asset_path_markers: Tuple[str, ...] = DEFAULT_ASSET_PATH_MARKERS
    strip_params: bool = True

    # Rendering
    render_js: bool = True
    navigation_timeout: float = 30.0
    settle_delay: float = 2.0
    wait_until: str = "networkidle"
    viewport_width: int = 1920
    viewport_height: int = 1080
    device_scale_factor: float = 2.0
    screenshots: bool = True

    # Download
    timeout: float = 15.0
    workers: int = 4
    max_redirects: int = 5
    retries: int = 2
    max_bytes: int = 50_000_000

    # Output
    write_index: bool = True


# -------------------- Errors --------------------


class MirrorError(Exception):
    pass


class MalformedURL(MirrorError, ValueError):
    pass


class NavigationError(MirrorError):
    pass


class DownloadError(MirrorError):
    def __init__(self, reason: str, status: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.status = status


class MirrorSetupError(MirrorError):
    """The renderer or the output root is unusable; the run cannot start."""


# -------------------- Records --------------------


@dataclass(frozen=True)
class PageRecord:
    url: str
    slug: str
    title: str
    image_count: int
    link_count: int
    asset_refs: Dict[str, List[str]] = field(default_factory=dict)
    has_screenshot: bool = False


class DownloadStatus(str, Enum):
    DOWNLOADED = "downloaded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class DownloadOutcome:
    asset_url: str
    local_filename: str
    status: DownloadStatus
    reason: Optional[str] = None


@dataclass
class Failure:
    url: str
    kind: str  # navigation | download | write
    reason: str


@dataclass
class RenderedPage:
    url: str
    base_url: str
    markup: str
    title: str
    image_refs: List[str] = field(default_factory=list)
    link_refs: List[str] = field(default_factory=list)
    style_refs: List[str] = field(default_factory=list)
    font_refs: List[str] = field(default_factory=list)
    full_capture: Optional[bytes] = None
    viewport_capture: Optional[bytes] = None


class VisitedSet:
    def __init__(self, init: Optional[Iterable[str]] = None):
        self._s: Set[str] = set(init or [])

    def add(self, url: str) -> None:
        self._s.add(url)

    def __contains__(self, url: str) -> bool:
        return url in self._s

    def __len__(self) -> int:
        return len(self._s)

    def dump_all(self) -> List[str]:
        return sorted(self._s)


@dataclass
class CrawlState:
    visited: VisitedSet = field(default_factory=VisitedSet)
    assets: Set[str] = field(default_factory=set)
    pages: List[PageRecord] = field(default_factory=list)
    failures: List[Failure] = field(default_factory=list)
    slugs: Set[str] = field(default_factory=set)

    def claim_slug(self, base: str) -> str:
        # /shop, /shop/ and /shop?page=2 are distinct pages with one base slug
        slug, n = base, 1
        while slug in self.slugs:
            n += 1
            slug = f"{base}-{n}"
        self.slugs.add(slug)
        return slug


@dataclass
class CrawlSummary:
    scraped_at: str
    origin: str
    stats: Dict[str, int]
    pages: List[PageRecord]
    assets: List[str]
    failures: List[Failure]

    def to_dict(self) -> dict:
        return asdict(self)


# -------------------- URL utils --------------------


def can_fetch_url(u: Optional[str]) -> bool:
    if not u:
        return False
    u = u.strip()
    if not u or u.lower().startswith(SKIPPED_REF_PREFIXES):
        return False
    return True


def origin_of(url: str) -> str:
    p = urlparse(url)
    return f"{p.scheme}://{p.netloc}"


def resolve_url(ref: str, base: str) -> str:
    if not ref or not ref.strip():
        raise MalformedURL("empty reference")
    try:
        absolute = urljoin(base, ref.strip())
        parsed = urlparse(absolute)
        parsed.port  # raises on a non-numeric port
    except ValueError as e:
        raise MalformedURL(f"cannot resolve {ref!r}: {e}") from e
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise MalformedURL(f"not an http(s) URL: {absolute!r}")
    return absolute


def normalize_url(u: str, *, strip_params: bool) -> str:
    p = urlparse(u)
    path = p.path or "/"
    if not strip_params or not p.query:
        return urlunparse((p.scheme, p.netloc, path, p.params, p.query, ""))
    keep = [
        (k, v)
        for k, v in parse_qsl(p.query, keep_blank_values=True)
        if not k.lower().startswith(TRACKING_PARAM_PREFIXES)
    ]
    return urlunparse((p.scheme, p.netloc, path, p.params, urlencode(keep), ""))


def normalize_page_url(u: str, *, strip_params: bool = True) -> str:
    return normalize_url(u, strip_params=strip_params)


def _host(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def is_page_candidate(url: str, origin: str) -> bool:
    host, origin_host = _host(url), _host(origin)
    if not host or not origin_host:
        return False
    return host == origin_host or host.endswith("." + origin_host)


def is_asset_candidate(url: str, origin: str, markers: Iterable[str]) -> bool:
    if _host(url) == _host(origin):
        return True
    segments = {seg.lower() for seg in urlparse(url).path.split("/") if seg}
    return any(m.lower() in segments for m in markers)


def classify_asset_refs(
    refs: Iterable[str], base: str, origin: str, markers: Iterable[str]
) -> Set[str]:
    markers = tuple(markers)
    found: Set[str] = set()
    for ref in refs:
        if not can_fetch_url(ref):
            continue
        try:
            absu = urldefrag(resolve_url(ref, base))[0]
        except MalformedURL as e:
            logging.debug("discarded asset ref: %s", e)
            continue
        if is_asset_candidate(absu, origin, markers):
            found.add(absu)
    return found


def classify_page_links(
    refs: Iterable[str], base: str, origin: str, *, strip_params: bool = True
) -> List[str]:
    links: Dict[str, None] = {}
    for ref in refs:
        if not can_fetch_url(ref):
            continue
        try:
            absu = resolve_url(ref, base)
        except MalformedURL as e:
            logging.debug("discarded link: %s", e)
            continue
        if is_page_candidate(absu, origin):
            links[normalize_page_url(absu, strip_params=strip_params)] = None
    return list(links)


def asset_filename(url: str) -> str:
    if not isinstance(url, str):
        return SENTINEL_FILENAME
    try:
        path = urlparse(url).path
    except ValueError:
        return SENTINEL_FILENAME
    name = path.split("/")[-1] or "index"
    if "." not in name:
        name += ".html"
    name = UNSAFE_FILENAME_CHARS_RE.sub("_", name)[:200]
    if name.strip(".") == "":
        return SENTINEL_FILENAME
    if name == MANIFEST_NAME:
        # the manifest lives next to the images
        return "_manifest_.json"
    return name


def page_slug(url: str) -> str:
    try:
        path = urlparse(url).path
    except ValueError:
        return SENTINEL_FILENAME
    slug = path.rstrip("/").replace("/", "_").lstrip("_")
    slug = UNSAFE_FILENAME_CHARS_RE.sub("_", slug)[:200]
    if not slug:
        return "homepage"
    if slug in RESERVED_SLUGS:
        return slug + "_page"
    return slug


# -------------------- HTML utils --------------------


def bs4_parse(html_text: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html_text, "lxml")
    except Exception:
        return BeautifulSoup(html_text, "html.parser")


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag and tag.get("href"):
        return urljoin(fallback, tag["href"])
    return fallback


def parse_srcset(v: str) -> List[str]:
    urls: List[str] = []
    if not v:
        return urls
    for cand in SRCSET_SPLIT_RE.split(v.strip()):
        if not cand:
            continue
        parts = WS_RE.split(cand.strip())
        if parts and parts[0]:
            urls.append(parts[0])
    return urls


def parse_css_urls(text: str) -> List[str]:
    return [m.group(2).strip() for m in CSS_URL_RE.finditer(text or "")]


def extract_image_refs(soup: BeautifulSoup) -> List[str]:
    refs: List[str] = []
    for img in soup.find_all("img"):
        for attr in ("src", "data-src", "data-lazy-src"):
            if img.get(attr):
                refs.append(img[attr])
        refs.extend(parse_srcset(img.get("srcset", "")))
    for source in soup.find_all("source"):
        if source.get("src"):
            refs.append(source["src"])
        refs.extend(parse_srcset(source.get("srcset", "")))
    for tag in soup.select("[style]"):
        refs.extend(parse_css_urls(tag.get("style") or ""))
    return [r for r in dict.fromkeys(refs) if can_fetch_url(r)]


def extract_link_refs(soup: BeautifulSoup) -> List[str]:
    return list(dict.fromkeys(a["href"] for a in soup.select("a[href]")))


def _link_rels(link) -> Set[str]:
    return {r.lower() for r in (link.get("rel") or [])}


def extract_style_refs(soup: BeautifulSoup) -> List[str]:
    return [
        link["href"]
        for link in soup.select("link[href]")
        if "stylesheet" in _link_rels(link)
    ]


def extract_font_refs(soup: BeautifulSoup) -> List[str]:
    return [
        link["href"]
        for link in soup.select("link[href]")
        if "preload" in _link_rels(link) and (link.get("as") or "").lower() == "font"
    ]


def rendered_from_markup(
    markup: str,
    final_url: str,
    *,
    title: Optional[str] = None,
    extra_image_refs: Iterable[str] = (),
    full_capture: Optional[bytes] = None,
    viewport_capture: Optional[bytes] = None,
) -> RenderedPage:
    soup = bs4_parse(markup)
    if title is None:
        title = soup.title.string.strip() if soup.title and soup.title.string else ""
    image_refs = extract_image_refs(soup)
    image_refs.extend(r for r in extra_image_refs if can_fetch_url(r))
    return RenderedPage(
        url=final_url,
        base_url=effective_base_url(soup, final_url),
        markup=markup,
        title=title,
        image_refs=list(dict.fromkeys(image_refs)),
        link_refs=extract_link_refs(soup),
        style_refs=extract_style_refs(soup),
        font_refs=extract_font_refs(soup),
        full_capture=full_capture,
        viewport_capture=viewport_capture,
    )


# -------------------- HTTP --------------------


def build_session(retries: int = 2) -> requests.Session:
    s = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods={"GET"},
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=32, pool_maxsize=32)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.clear()
    s.headers.update(DEFAULT_HEADERS)
    s.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
    return s


def ensure_parent_dir(p: Path) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    ensure_parent_dir(path)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)


def atomic_write_json(path: Path, data: Union[dict, list]) -> None:
    atomic_write_bytes(path, json.dumps(data, indent=2).encode("utf-8"))


def utc_timestamp() -> str:
    # RFC3339 UTC timestamp without microseconds
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


# -------------------- Rendering --------------------


class HtmlRenderer:
    def start(self) -> None:
        pass

    def render(self, url: str, timeout: float) -> RenderedPage:
        raise NotImplementedError

    def close(self) -> None:
        pass


class RequestsRenderer(HtmlRenderer):
    def __init__(self, session: requests.Session):
        self.session = session

    def render(self, url: str, timeout: float) -> RenderedPage:
        try:
            r = self.session.get(url, timeout=timeout)
        except requests.RequestException as e:
            raise NavigationError(f"{url}: {e}") from e
        if r.status_code >= 400:
            raise NavigationError(f"{url}: HTTP {r.status_code}")
        ct = (r.headers.get("Content-Type") or "").lower()
        if "text/html" not in ct and "application/xhtml+xml" not in ct:
            raise NavigationError(f"{url}: not an HTML document ({ct or 'no type'})")
        if not r.encoding:
            r.encoding = r.apparent_encoding or "utf-8"
        return rendered_from_markup(r.text, r.url or url)


class PlaywrightRenderer(HtmlRenderer):
    def __init__(self, settings: Settings):
        self.wait_until = settings.wait_until
        self.settle_delay = settings.settle_delay
        self.screenshots = settings.screenshots
        self.viewport = {
            "width": settings.viewport_width,
            "height": settings.viewport_height,
        }
        self.device_scale_factor = settings.device_scale_factor
        self._pl = None
        self._browser = None
        self._page = None

    def start(self) -> None:
        if self._page is not None:
            return
        try:
            from playwright.sync_api import sync_playwright
        except ImportError as e:
            raise MirrorSetupError(
                "Playwright not installed. Run: pip install playwright && playwright install chromium"
            ) from e
        try:
            self._pl = sync_playwright().start()
            self._browser = self._pl.chromium.launch(headless=True)
            context = self._browser.new_context(
                user_agent=USER_AGENT,
                viewport=self.viewport,
                device_scale_factor=self.device_scale_factor,
            )
            self._page = context.new_page()
        except Exception as e:
            self.close()
            raise MirrorSetupError(f"cannot launch Chromium: {e}") from e

    def render(self, url: str, timeout: float) -> RenderedPage:
        self.start()
        page = self._page
        try:
            page.goto(url, wait_until=self.wait_until, timeout=timeout * 1000)
            if self.settle_delay > 0:
                page.wait_for_timeout(self.settle_delay * 1000)
            markup = page.content()
            title = page.title()
            final_url = page.url
            backgrounds = page.evaluate(BACKGROUND_IMAGES_JS)
            full = viewport = None
            if self.screenshots:
                full = page.screenshot(full_page=True)
                viewport = page.screenshot(full_page=False)
        except Exception as e:
            raise NavigationError(f"{url}: {e}") from e
        return rendered_from_markup(
            markup,
            final_url,
            title=title,
            extra_image_refs=backgrounds or [],
            full_capture=full,
            viewport_capture=viewport,
        )

    def close(self) -> None:
        browser, pl = self._browser, self._pl
        self._page = self._browser = self._pl = None
        if browser is not None:
            try:
                browser.close()
            except Exception as e:
                logging.debug("browser close failed: %s", e)
        if pl is not None:
            try:
                pl.stop()
            except Exception as e:
                logging.debug("playwright stop failed: %s", e)


def get_renderer(settings: Settings, session: requests.Session) -> HtmlRenderer:
    if settings.render_js:
        return PlaywrightRenderer(settings)
    return RequestsRenderer(session)


# -------------------- Crawler --------------------


def save_page_artifacts(
    output_dir: Path, url: str, slug: str, page: RenderedPage, state: CrawlState
) -> Set[str]:
    """Write markup and captures for one page; returns the names written."""
    files = [(output_dir / f"{slug}.html", page.markup.encode("utf-8"))]
    if page.full_capture is not None:
        files.append((output_dir / f"screenshot-{slug}.png", page.full_capture))
    if page.viewport_capture is not None:
        files.append((output_dir / f"viewport-{slug}.png", page.viewport_capture))
    written: Set[str] = set()
    for path, data in files:
        try:
            atomic_write_bytes(path, data)
        except OSError as e:
            logging.warning("cannot write %s: %s", path, e)
            state.failures.append(Failure(url, "write", f"{path.name}: {e}"))
            continue
        written.add(path.name)
    return written


def _resolve_all(refs: Iterable[str], base: str) -> List[str]:
    out: List[str] = []
    for ref in refs:
        try:
            out.append(resolve_url(ref, base))
        except MalformedURL:
            continue
    return list(dict.fromkeys(out))


def process_page(
    url: str,
    page: RenderedPage,
    origin: str,
    settings: Settings,
    state: CrawlState,
    output_dir: Optional[Path] = None,
) -> List[str]:
    assets = classify_asset_refs(
        page.image_refs, page.base_url, origin, settings.asset_path_markers
    )
    state.assets.update(assets)
    links = classify_page_links(
        page.link_refs, page.base_url, origin, strip_params=settings.strip_params
    )
    slug = state.claim_slug(page_slug(url))
    written: Set[str] = set()
    if output_dir is not None:
        written = save_page_artifacts(output_dir, url, slug, page, state)
    record = PageRecord(
        url=url,
        slug=slug,
        title=page.title,
        image_count=len(page.image_refs),
        link_count=len(links),
        asset_refs={
            "css": _resolve_all(page.style_refs, page.base_url),
            "fonts": _resolve_all(page.font_refs, page.base_url),
        },
        has_screenshot=f"screenshot-{slug}.png" in written,
    )
    state.pages.append(record)
    logging.info(
        "    saved: %s (%d images, %d links)",
        record.slug,
        record.image_count,
        record.link_count,
    )
    return links


def crawl(
    renderer: HtmlRenderer,
    origin_url: str,
    settings: Settings,
    *,
    output_dir: Optional[Path] = None,
    state: Optional[CrawlState] = None,
) -> CrawlState:
    """Depth-first traversal from the origin root, then the seed paths.

    Links found on a page are explored before its later siblings and before
    any seed path, so the page cap favors the first branch of the link graph.
    """
    state = state if state is not None else CrawlState()
    origin = origin_of(origin_url)
    root = normalize_page_url(origin_url, strip_params=settings.strip_params)

    seeds: List[Tuple[str, int]] = [(root, 0)]
    for path in settings.seed_paths:
        try:
            seed = resolve_url(path, root)
        except MalformedURL as e:
            logging.warning("ignoring seed path %r: %s", path, e)
            continue
        if not is_page_candidate(seed, origin):
            logging.warning("ignoring seed path %r: leaves %s", path, origin)
            continue
        seeds.append((normalize_page_url(seed, strip_params=settings.strip_params), 1))
    stack: List[Tuple[str, int]] = list(reversed(seeds))

    while stack:
        url, depth = stack.pop()
        if url in state.visited or depth > settings.max_depth:
            continue
        if len(state.visited) >= settings.max_pages:
            logging.debug("page cap reached, not dispatching %s", url)
            continue
        state.visited.add(url)
        logging.info(
            "Scrape page [%d/%d] depth=%d: %s",
            len(state.visited),
            settings.max_pages,
            depth,
            url,
        )
        try:
            page = renderer.render(url, settings.navigation_timeout)
        except MirrorSetupError:
            raise
        except NavigationError as e:
            logging.warning("render failed: %s", e)
            state.failures.append(Failure(url, "navigation", str(e)))
            continue
        except Exception as e:
            logging.exception("renderer error on %s", url)
            state.failures.append(Failure(url, "navigation", repr(e)))
            continue

        links = process_page(url, page, origin, settings, state, output_dir)
        if depth >= settings.max_depth:
            continue
        for link in reversed(links):
            if link not in state.visited:
                stack.append((link, depth + 1))
    return state


# -------------------- Downloader --------------------


class AssetDownloader:
    def __init__(
        self,
        images_dir: Path,
        settings: Settings,
        session: Optional[requests.Session] = None,
    ):
        self.images_dir = images_dir
        self.settings = settings
        self.session = session if session is not None else build_session(settings.retries)
        self._locks: Dict[str, Lock] = {}
        self._locks_guard = Lock()

    def _lock_for(self, filename: str) -> Lock:
        with self._locks_guard:
            lock = self._locks.get(filename)
            if lock is None:
                lock = self._locks[filename] = Lock()
            return lock

    def _fetch(self, url: str) -> requests.Response:
        current = url
        for _ in range(self.settings.max_redirects + 1):
            try:
                resp = self.session.get(
                    current,
                    timeout=self.settings.timeout,
                    stream=True,
                    allow_redirects=False,
                )
            except requests.RequestException as e:
                raise DownloadError(f"transport error: {e}") from e
            status = resp.status_code
            if status in REDIRECT_STATUSES:
                location = resp.headers.get("Location")
                resp.close()
                if not location:
                    raise DownloadError(f"HTTP {status} without Location", status)
                try:
                    nxt = resolve_url(location, current)
                except MalformedURL as e:
                    raise DownloadError(f"bad redirect target: {e}", status) from e
                logging.debug("redirect %s -> %s", current, nxt)
                current = nxt
                continue
            if not 200 <= status < 300:
                resp.close()
                raise DownloadError(f"HTTP {status}", status)
            return resp
        raise DownloadError(f"too many redirects (>{self.settings.max_redirects})")

    def _stream_to(self, resp: requests.Response, dest: Path) -> int:
        cl = resp.headers.get("Content-Length")
        if cl and cl.isdigit() and int(cl) > self.settings.max_bytes:
            raise DownloadError(f"too large ({cl} bytes)")
        ensure_parent_dir(dest)
        fd, tmp_name = tempfile.mkstemp(prefix=".", suffix=".part", dir=dest.parent)
        tmp = Path(tmp_name)
        written = 0
        try:
            with os.fdopen(fd, "wb") as fh:
                try:
                    for chunk in resp.iter_content(chunk_size=64 * 1024):
                        if not chunk:
                            continue
                        written += len(chunk)
                        if written > self.settings.max_bytes:
                            raise DownloadError(
                                f"too large (> {self.settings.max_bytes} bytes)"
                            )
                        fh.write(chunk)
                except requests.RequestException as e:
                    raise DownloadError(f"transport error: {e}") from e
            if written == 0:
                raise DownloadError("empty response")
            os.replace(tmp, dest)
        finally:
            tmp.unlink(missing_ok=True)
        return written

    def download_one(self, url: str) -> DownloadOutcome:
        filename = asset_filename(url)
        dest = self.images_dir / filename
        with self._lock_for(filename):
            if dest.exists():
                logging.info("exists: %s", filename)
                return DownloadOutcome(url, filename, DownloadStatus.SKIPPED, "exists")
            try:
                resp = self._fetch(url)
                try:
                    size = self._stream_to(resp, dest)
                finally:
                    resp.close()
            except DownloadError as e:
                logging.warning("failed %s -> %s", url, e.reason)
                return DownloadOutcome(url, filename, DownloadStatus.FAILED, e.reason)
            except OSError as e:
                logging.warning("cannot write %s: %s", dest, e)
                return DownloadOutcome(
                    url, filename, DownloadStatus.FAILED, f"write error: {e}"
                )
        logging.info("downloaded asset: %s -> %s (%d bytes)", url, filename, size)
        return DownloadOutcome(url, filename, DownloadStatus.DOWNLOADED)

    def download_all(self, urls: Iterable[str]) -> List[DownloadOutcome]:
        url_list = sorted(set(urls))
        outcomes: List[DownloadOutcome] = []
        if not url_list:
            return outcomes
        self.images_dir.mkdir(parents=True, exist_ok=True)
        with ThreadPoolExecutor(max_workers=max(1, self.settings.workers)) as pool:
            future_map = {pool.submit(self.download_one, u): u for u in url_list}
            for fut in as_completed(future_map):
                outcomes.append(fut.result())
        return outcomes


# -------------------- Manifest / summary --------------------


def build_manifest(outcomes: Iterable[DownloadOutcome]) -> Dict[str, str]:
    manifest: Dict[str, str] = {}
    on_disk = [o for o in outcomes if o.status is not DownloadStatus.FAILED]
    # a file fetched in this run owns its name over one that was already there
    on_disk.sort(key=lambda o: (o.status is DownloadStatus.DOWNLOADED, o.asset_url))
    for o in on_disk:
        prev = manifest.get(o.local_filename)
        if prev is not None and prev != o.asset_url:
            logging.warning(
                "filename collision on %s: %s replaces %s",
                o.local_filename,
                o.asset_url,
                prev,
            )
        manifest[o.local_filename] = o.asset_url
    return dict(sorted(manifest.items()))


def build_summary(
    origin: str,
    state: CrawlState,
    outcomes: Iterable[DownloadOutcome],
    *,
    scraped_at: Optional[str] = None,
) -> CrawlSummary:
    outcomes = list(outcomes)

    def count(status: DownloadStatus) -> int:
        return sum(1 for o in outcomes if o.status is status)

    failures = list(state.failures)
    failures.extend(
        Failure(o.asset_url, "download", o.reason or "")
        for o in sorted(outcomes, key=lambda o: o.asset_url)
        if o.status is DownloadStatus.FAILED
    )
    stats = {
        "pages_scraped": len(state.pages),
        "pages_failed": sum(1 for f in state.failures if f.kind == "navigation"),
        "assets_found": len(state.assets),
        "assets_downloaded": count(DownloadStatus.DOWNLOADED),
        "assets_skipped": count(DownloadStatus.SKIPPED),
        "assets_failed": count(DownloadStatus.FAILED),
    }
    return CrawlSummary(
        scraped_at=scraped_at or utc_timestamp(),
        origin=origin,
        stats=stats,
        pages=list(state.pages),
        assets=sorted(state.assets),
        failures=failures,
    )


def render_index(summary: CrawlSummary, manifest: Dict[str, str]) -> str:
    esc = html.escape
    def shot(p: PageRecord) -> str:
        if not p.has_screenshot:
            return ""
        return f'\n      <img src="screenshot-{esc(p.slug)}.png" alt="{esc(p.title)}">'

    page_cards = "\n".join(
        f"""    <div class="card">{shot(p)}
      <h3>{esc(p.title or p.slug)}</h3>
      <p><a href="{esc(p.slug)}.html">View HTML</a> · <a href="{esc(p.url)}" target="_blank">Original</a></p>
    </div>"""
        for p in summary.pages
    )
    image_cards = "\n".join(
        f"""    <div class="card">
      <img src="{IMAGES_DIRNAME}/{esc(name)}" alt="" onerror="this.style.display='none'">
      <p>{esc(name)}</p>
    </div>"""
        for name in list(manifest)[:INDEX_IMAGE_LIMIT]
    )
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{esc(summary.origin)} - mirrored site index</title>
  <style>
    body {{ font-family: system-ui; max-width: 1200px; margin: 0 auto; padding: 2rem; }}
    .grid {{ display: grid; grid-template-columns: repeat(auto-fill, minmax(300px, 1fr)); gap: 1rem; }}
    .card img {{ width: 100%; height: 200px; object-fit: cover; }}
    .card h3 {{ margin: 0.5rem 0; font-size: 1rem; }}
  </style>
</head>
<body>
  <h1>{esc(summary.origin)}</h1>
  <p>Scraped: {esc(summary.scraped_at)}</p>
  <h2>Pages ({len(summary.pages)})</h2>
  <div class="grid">
{page_cards}
  </div>
  <h2>Images ({len(manifest)})</h2>
  <div class="grid">
{image_cards}
  </div>
</body>
</html>
"""


def write_outputs(
    output_dir: Path,
    summary: CrawlSummary,
    manifest: Dict[str, str],
    *,
    write_index: bool = True,
) -> None:
    files: List[Tuple[Path, bytes]] = [
        (
            output_dir / IMAGES_DIRNAME / MANIFEST_NAME,
            json.dumps(manifest, indent=2).encode("utf-8"),
        ),
        (
            output_dir / SUMMARY_NAME,
            json.dumps(summary.to_dict(), indent=2).encode("utf-8"),
        ),
    ]
    if write_index:
        files.append(
            (output_dir / INDEX_NAME, render_index(summary, manifest).encode("utf-8"))
        )
    for path, data in files:
        try:
            atomic_write_bytes(path, data)
        except OSError as e:
            logging.error("cannot write %s: %s", path, e)


# -------------------- Main: mirror --------------------


def mirror_site(
    origin_url: str,
    output_folder: Union[str, Path],
    settings: Settings,
    *,
    renderer: Optional[HtmlRenderer] = None,
    session: Optional[requests.Session] = None,
) -> CrawlSummary:
    out_root = Path(output_folder).resolve()
    try:
        (out_root / IMAGES_DIRNAME).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise MirrorSetupError(f"cannot create output root {out_root}: {e}") from e

    session = session if session is not None else build_session(settings.retries)
    renderer = renderer if renderer is not None else get_renderer(settings, session)
    try:
        renderer.start()
        state = crawl(renderer, origin_url, settings, output_dir=out_root)
    finally:
        renderer.close()

    logging.info(
        "Downloading %d assets with %d workers", len(state.assets), settings.workers
    )
    downloader = AssetDownloader(out_root / IMAGES_DIRNAME, settings, session)
    outcomes = downloader.download_all(state.assets)

    manifest = build_manifest(outcomes)
    summary = build_summary(origin_of(origin_url), state, outcomes)
    write_outputs(out_root, summary, manifest, write_index=settings.write_index)
    return summary


# -------------------- Config loader --------------------


def load_config_file(path: str) -> Dict[str, Union[str, int, float, bool, List[str]]]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        import tomllib

        with open(p, "rb") as f:
            return tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        try:
            import yaml
        except ImportError as e:
            raise RuntimeError("YAML config requires 'PyYAML'") from e
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise RuntimeError("Top-level YAML must be a mapping")
            return data
    else:
        raise RuntimeError("Unsupported config format. Use .toml or .yaml")


# -------------------- CLI --------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Mirror a site: rendered pages, screenshots and images.",
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)
    p.add_argument("url", help="http(s) origin URL")
    p.add_argument("output_folder", help="output directory")
    p.add_argument("--verbose", action="store_true", help="debug logging")
    # crawl
    p.add_argument("--max-depth", type=int, default=2, help="max link depth")
    p.add_argument("--max-pages", type=int, default=30, help="max pages to visit")
    p.add_argument(
        "--seed-path",
        dest="seed_paths",
        action="append",
        default=[],
        help="extra path to visit (repeatable), e.g. /about",
    )
    p.add_argument(
        "--asset-marker",
        dest="asset_path_markers",
        action="append",
        default=None,
        help="path segment marking off-host image uploads (repeatable)",
    )
    p.add_argument(
        "--no-strip-params",
        dest="strip_params",
        action="store_false",
        help="keep tracking query parameters on page URLs",
    )
    # render
    p.add_argument(
        "--no-render",
        dest="render_js",
        action="store_false",
        help="fetch pages with plain HTTP instead of a headless browser",
    )
    p.add_argument(
        "--navigation-timeout",
        type=float,
        default=30.0,
        help="page navigation timeout seconds",
    )
    p.add_argument(
        "--settle-delay",
        type=float,
        default=2.0,
        help="seconds to wait after navigation",
    )
    p.add_argument(
        "--wait-until", type=str, default="networkidle", help="Playwright wait_until"
    )
    p.add_argument(
        "--no-screenshots",
        dest="screenshots",
        action="store_false",
        help="skip page screenshots",
    )
    # download
    p.add_argument(
        "--timeout", type=float, default=15.0, help="asset request timeout seconds"
    )
    p.add_argument("--workers", type=int, default=4, help="concurrent downloads")
    p.add_argument("--max-redirects", type=int, default=5, help="redirects per asset")
    p.add_argument(
        "--retries", type=int, default=2, help="retries on transport errors and 5xx"
    )
    p.add_argument(
        "--max-bytes", type=int, default=50_000_000, help="max bytes per file"
    )
    # output
    p.add_argument(
        "--no-index",
        dest="write_index",
        action="store_false",
        help="do not write index.html",
    )
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        if isinstance(cfg, dict):
            flat = {k: v for k, v in cfg.items() if not isinstance(v, dict)}
            for g in ("crawl", "render", "download", "general"):
                if isinstance(cfg.get(g), dict):
                    flat.update(cfg[g])
            parser.set_defaults(**flat)
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    return Settings(
        max_depth=max(0, args.max_depth),
        max_pages=max(1, args.max_pages),
        seed_paths=list(args.seed_paths or []),
        asset_path_markers=tuple(args.asset_path_markers or DEFAULT_ASSET_PATH_MARKERS),
        strip_params=args.strip_params,
        render_js=args.render_js,
        navigation_timeout=max(1.0, args.navigation_timeout),
        settle_delay=max(0.0, args.settle_delay),
        wait_until=args.wait_until,
        screenshots=args.screenshots,
        timeout=max(1.0, args.timeout),
        workers=max(1, args.workers),
        max_redirects=max(0, args.max_redirects),
        retries=max(0, args.retries),
        max_bytes=max(1024, args.max_bytes),
        write_index=args.write_index,
    )


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    if urlparse(args.url).scheme not in {"http", "https"}:
        print("Invalid URL. Use http:// or https://")
        sys.exit(1)
    settings = settings_from_args(args)

    print("Reminder: only mirror content you own or have permission to copy.")
    try:
        summary = mirror_site(args.url, args.output_folder, settings)
    except MirrorSetupError as e:
        logging.error("%s", e)
        sys.exit(1)

    stats = summary.stats
    print("Mirroring complete")
    print(f"Pages scraped:     {stats['pages_scraped']} ({stats['pages_failed']} failed)")
    print(f"Images found:      {stats['assets_found']}")
    print(f"Images downloaded: {stats['assets_downloaded']}")
    print(f"Images skipped:    {stats['assets_skipped']}")
    print(f"Images failed:     {stats['assets_failed']}")
    print(f"Output: {Path(args.output_folder).resolve()}")


if __name__ == "__main__":
    main()
