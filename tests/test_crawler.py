import pytest

import site_mirror as sm
from conftest import FakeRenderer, html_page

HOME = "https://example.com/"
ABOUT = "https://example.com/about"
CONTACT = "https://example.com/contact"


def three_page_site():
    return {
        HOME: html_page("Home", links=["/about"], images=["/img/home.jpg"]),
        ABOUT: html_page("About", links=["/contact", "/"], images=["/img/about.jpg"]),
        CONTACT: html_page("Contact", links=["/"]),
    }


def test_three_page_site_visits_each_page_once(settings):
    renderer = FakeRenderer(three_page_site())

    state = sm.crawl(renderer, "https://example.com", settings)

    assert [p.url for p in state.pages] == [HOME, ABOUT, CONTACT]
    assert renderer.calls.count(HOME) == 1
    assert len(renderer.calls) == len(state.visited) == 3
    assert state.assets == {
        "https://example.com/img/home.jpg",
        "https://example.com/img/about.jpg",
    }
    assert state.failures == []


def test_page_record_fields(settings):
    state = sm.crawl(FakeRenderer(three_page_site()), HOME, settings)
    about = state.pages[1]
    assert about.slug == "about"
    assert about.title == "About"
    assert about.image_count == 1
    assert about.link_count == 2
    assert about.asset_refs == {"css": [], "fonts": []}
    with pytest.raises(AttributeError):
        about.title = "changed"


def test_depth_cap(settings):
    pages = {
        HOME: html_page(links=["/p1"]),
        "https://example.com/p1": html_page(links=["/p2"]),
        "https://example.com/p2": html_page(links=["/p3"]),
        "https://example.com/p3": html_page(),
    }
    renderer = FakeRenderer(pages)

    state = sm.crawl(renderer, HOME, settings)

    assert [p.url for p in state.pages] == [
        HOME,
        "https://example.com/p1",
        "https://example.com/p2",
    ]
    assert "https://example.com/p3" not in state.visited
    assert "https://example.com/p3" not in renderer.calls


def test_page_cap(settings):
    links = [f"/item-{i}" for i in range(50)]
    pages = {HOME: html_page(links=links)}
    pages.update({f"https://example.com/item-{i}": html_page() for i in range(50)})
    renderer = FakeRenderer(pages)

    state = sm.crawl(renderer, HOME, settings)

    assert len(state.visited) == 30
    assert len(renderer.calls) == 30
    assert len(state.pages) == 30


def test_custom_page_cap_applies_to_seeds(settings):
    settings.max_pages = 2
    settings.seed_paths = ["/a", "/b"]
    pages = {HOME: html_page(), ABOUT: html_page()}
    pages["https://example.com/a"] = html_page()
    pages["https://example.com/b"] = html_page()
    renderer = FakeRenderer(pages)

    state = sm.crawl(renderer, HOME, settings)

    assert renderer.calls == [HOME, "https://example.com/a"]
    assert len(state.visited) == 2


def test_traversal_is_depth_first(settings):
    pages = {
        HOME: html_page(links=["/a", "/b"]),
        "https://example.com/a": html_page(links=["/a1"]),
        "https://example.com/a1": html_page(),
        "https://example.com/b": html_page(),
    }
    renderer = FakeRenderer(pages)

    sm.crawl(renderer, HOME, settings)

    assert renderer.calls == [
        HOME,
        "https://example.com/a",
        "https://example.com/a1",
        "https://example.com/b",
    ]


def test_render_failure_is_recorded_and_crawl_continues(settings):
    pages = three_page_site()
    renderer = FakeRenderer(pages, failing=[ABOUT])
    pages[HOME] = html_page(links=["/about", "/contact"])

    state = sm.crawl(renderer, HOME, settings)

    assert [p.url for p in state.pages] == [HOME, CONTACT]
    assert ABOUT in state.visited
    assert [(f.url, f.kind) for f in state.failures] == [(ABOUT, "navigation")]


def test_unexpected_renderer_error_does_not_abort(settings):
    class Flaky(FakeRenderer):
        def render(self, url, timeout):
            if url == ABOUT:
                self.calls.append(url)
                raise RuntimeError("target closed")
            return super().render(url, timeout)

    state = sm.crawl(Flaky(three_page_site()), HOME, settings)

    assert [p.url for p in state.pages] == [HOME]
    assert state.failures[0].url == ABOUT


def test_setup_error_from_renderer_is_fatal(settings):
    class Broken(FakeRenderer):
        def render(self, url, timeout):
            raise sm.MirrorSetupError("browser gone")

    with pytest.raises(sm.MirrorSetupError):
        sm.crawl(Broken({}), HOME, settings)


def test_seed_paths_reach_unlinked_pages(settings):
    settings.seed_paths = ["/hidden", "/about", "http://[bad"]
    pages = three_page_site()
    pages["https://example.com/hidden"] = html_page("Hidden")
    renderer = FakeRenderer(pages)

    state = sm.crawl(renderer, HOME, settings)

    assert renderer.calls == [HOME, ABOUT, CONTACT, "https://example.com/hidden"]
    assert state.pages[-1].title == "Hidden"


def test_seed_paths_never_leave_the_origin(settings):
    settings.seed_paths = ["//evil.net/x", "https://other.org/", "/about"]
    pages = three_page_site()
    pages["https://evil.net/x"] = html_page("Evil")
    pages["https://other.org/"] = html_page("Other")
    renderer = FakeRenderer(pages)

    sm.crawl(renderer, HOME, settings)

    assert renderer.calls == [HOME, ABOUT, CONTACT]


def test_pages_sharing_a_slug_keep_separate_files(settings, tmp_path):
    pages = {
        HOME: html_page("Home", links=["/shop", "/shop?page=2", "/shop/"]),
        "https://example.com/shop": html_page("Shop"),
        "https://example.com/shop?page=2": html_page("Shop page 2"),
        "https://example.com/shop/": html_page("Shop slash"),
    }

    state = sm.crawl(FakeRenderer(pages), HOME, settings, output_dir=tmp_path)

    assert [(p.url, p.slug) for p in state.pages] == [
        (HOME, "homepage"),
        ("https://example.com/shop", "shop"),
        ("https://example.com/shop?page=2", "shop-2"),
        ("https://example.com/shop/", "shop-3"),
    ]
    assert "<title>Shop</title>" in (tmp_path / "shop.html").read_text(encoding="utf-8")
    assert "Shop page 2" in (tmp_path / "shop-2.html").read_text(encoding="utf-8")
    assert "Shop slash" in (tmp_path / "shop-3.html").read_text(encoding="utf-8")
    assert (tmp_path / "screenshot-shop-3.png").exists()
    assert all(p.has_screenshot for p in state.pages)


def test_off_site_links_and_images_are_ignored(settings):
    pages = {
        HOME: html_page(
            links=["https://elsewhere.com/", "https://blog.example.com/"],
            images=[
                "https://ads.net/banner.gif",
                "https://cdn.net/wp-content/uploads/x.jpg",
                "data:image/png;base64,AAAA",
            ],
        ),
        "https://blog.example.com/": html_page("Blog"),
    }
    renderer = FakeRenderer(pages)

    state = sm.crawl(renderer, HOME, settings)

    assert renderer.calls == [HOME, "https://blog.example.com/"]
    assert state.assets == {"https://cdn.net/wp-content/uploads/x.jpg"}


def test_artifacts_are_written_by_slug(settings, tmp_path):
    sm.crawl(FakeRenderer(three_page_site()), HOME, settings, output_dir=tmp_path)

    assert (tmp_path / "homepage.html").read_text(encoding="utf-8").startswith("<html>")
    assert (tmp_path / "screenshot-about.png").read_bytes() == b"\x89PNG full"
    assert (tmp_path / "viewport-contact.png").read_bytes() == b"\x89PNG viewport"


def test_artifact_write_failure_is_recorded(settings, tmp_path):
    blocker = tmp_path / "out"
    blocker.write_text("a file where a directory should be")

    state = sm.crawl(
        FakeRenderer({HOME: html_page("Home")}), HOME, settings, output_dir=blocker
    )

    assert len(state.pages) == 1
    assert {f.kind for f in state.failures} == {"write"}


def test_crawls_do_not_share_state(settings):
    first = sm.crawl(FakeRenderer(three_page_site()), HOME, settings)
    second = sm.crawl(FakeRenderer(three_page_site()), HOME, settings)

    assert len(first.pages) == len(second.pages) == 3
    assert first.visited is not second.visited


def test_existing_state_is_extended(settings):
    state = sm.CrawlState()
    state.visited.add(ABOUT)

    sm.crawl(FakeRenderer(three_page_site()), HOME, settings, state=state)

    assert [p.url for p in state.pages] == [HOME]
