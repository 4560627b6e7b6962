"""
SEO helpers

Slugs, excerpts and reading time for posts, schema.org JSON-LD, and the
XML documents served to crawlers (RSS, Atom, sitemap) plus robots.txt.
"""

import math
import re
import unicodedata
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Iterable, Optional
from xml.etree import ElementTree as ET

import settings
from database import as_utc

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9\s-]")
_SLUG_DASH_RE = re.compile(r"[\s_-]+")
_REL_SRC_RE = re.compile(r"""src=["']/([^"']+)["']""")
_REL_HREF_RE = re.compile(r"""href=["']/([^"']+)["']""")

WORDS_PER_MINUTE = 200
EXCERPT_LENGTH = 300

CONTENT_NS = "http://purl.org/rss/1.0/modules/content/"
ATOM_NS = "http://www.w3.org/2005/Atom"
SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"


def slugify(text: str) -> str:
    """Lowercase ASCII slug: "Hello, World!" -> "hello-world"."""
    text = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    text = _SLUG_STRIP_RE.sub("", text.lower().strip())
    return _SLUG_DASH_RE.sub("-", text).strip("-")


def strip_html(html: Optional[str]) -> str:
    if not html:
        return ""
    return _SPACE_RE.sub(" ", _TAG_RE.sub("", html)).strip()


def make_excerpt(content: str, length: int = EXCERPT_LENGTH) -> str:
    text = strip_html(content)
    if len(text) <= length:
        return text
    return text[: length - 3] + "..."


def reading_time(content: str) -> int:
    words = len(strip_html(content).split())
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def absolute_urls(content: str, site_url: str = None) -> str:
    site_url = site_url or settings.SITE_URL
    content = _REL_SRC_RE.sub(lambda m: f'src="{site_url}/{m.group(1)}"', content or "")
    return _REL_HREF_RE.sub(lambda m: f'href="{site_url}/{m.group(1)}"', content)


def author_url(author: dict) -> str:
    site = settings.SITE_URL
    if author.get("username"):
        return f"{site}/author/{author['username']}"
    if author.get("_id"):
        return f"{site}/profile/{author['_id']}"
    if author.get("name"):
        return f"{site}/author/{_SPACE_RE.sub('-', author['name'].lower())}"
    return f"{site}/authors"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


# Structured data
def structured_data(
    kind: str = "website",
    title: str = None,
    description: str = None,
    author: dict = None,
    published_at: datetime = None,
    modified_at: datetime = None,
    canonical_url: str = None,
    image_url: str = None,
    image_alt: str = None,
    category: str = None,
    tags: Iterable = (),
    reading_minutes: int = None,
) -> Optional[dict]:
    site = settings.SITE_URL
    description = description or settings.SITE_DESCRIPTION
    tags = list(tags or [])

    if kind == "article" and author:
        person = {"@type": "Person", "name": author.get("name"), "url": author_url(author)}
        if author.get("avatar_url"):
            person["image"] = author["avatar_url"]
        data = {
            "@context": "https://schema.org",
            "@type": "Article",
            "headline": title,
            "description": description,
            "author": person,
            "publisher": {
                "@type": "Organization",
                "name": settings.SITE_NAME,
                "logo": {"@type": "ImageObject", "url": f"{site}/logo.png"},
            },
        }
        if published_at:
            data["datePublished"] = _iso(published_at)
        if modified_at:
            data["dateModified"] = _iso(modified_at)
        if canonical_url:
            data["url"] = canonical_url
        if image_url:
            data["image"] = {"@type": "ImageObject", "url": image_url, "alt": image_alt or title}
        if category:
            data["articleSection"] = category
        if tags:
            data["keywords"] = ", ".join(tags)
        if reading_minutes:
            data["timeRequired"] = f"PT{reading_minutes}M"
        return data

    if kind == "website":
        return {
            "@context": "https://schema.org",
            "@type": "WebSite",
            "name": settings.SITE_NAME,
            "description": description,
            "url": site,
            "potentialAction": {
                "@type": "SearchAction",
                "target": {
                    "@type": "EntryPoint",
                    "urlTemplate": f"{site}/search?q={{search_term_string}}",
                },
                "query-input": "required name=search_term_string",
            },
        }

    if kind == "organization":
        return {
            "@context": "https://schema.org",
            "@type": "Organization",
            "name": settings.SITE_NAME,
            "description": description,
            "url": site,
            "logo": {"@type": "ImageObject", "url": f"{site}/logo.png"},
            "sameAs": [],
        }

    return None


def breadcrumb_list(items: Iterable) -> dict:
    """items: (name, path) pairs, path relative to the site root."""
    return {
        "@context": "https://schema.org",
        "@type": "BreadcrumbList",
        "itemListElement": [
            {"@type": "ListItem", "position": i, "name": name, "item": f"{settings.SITE_URL}{path}"}
            for i, (name, path) in enumerate(items, start=1)
        ],
    }


# Feeds
def _text(parent, tag: str, text, **attrib):
    el = ET.SubElement(parent, tag, attrib)
    if text is not None:
        el.text = str(text)
    return el


def _to_xml(root) -> str:
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode")


def post_url(post: dict) -> str:
    return f"{settings.SITE_URL}/blog/{post['slug']}"


def rss_feed(posts: list) -> str:
    """RSS 2.0 document. Each post carries optional `author` / `category` dicts."""
    ET.register_namespace("content", CONTENT_NS)
    ET.register_namespace("atom", ATOM_NS)
    site = settings.SITE_URL

    rss = ET.Element("rss", {"version": "2.0"})
    channel = ET.SubElement(rss, "channel")
    _text(channel, "title", settings.SITE_NAME)
    _text(channel, "link", f"{site}/")
    _text(channel, "description", settings.SITE_DESCRIPTION)
    _text(channel, "language", "en")
    newest = posts[0].get("published_at") if posts else None
    _text(channel, "lastBuildDate", format_datetime(as_utc(newest) or datetime.now(timezone.utc)))
    ET.SubElement(
        channel,
        f"{{{ATOM_NS}}}link",
        {"href": f"{site}/api/feed/rss", "rel": "self", "type": "application/rss+xml"},
    )

    for post in posts:
        item = ET.SubElement(channel, "item")
        link = post_url(post)
        _text(item, "title", post.get("title") or "Untitled")
        _text(item, "link", link)
        _text(item, "guid", link, isPermaLink="true")
        _text(item, "description", post.get("excerpt") or make_excerpt(post.get("content", "")))
        _text(item, f"{{{CONTENT_NS}}}encoded", absolute_urls(post.get("content", "")))
        author = post.get("author") or {}
        _text(item, "author", f"{author.get('email', '')} ({author.get('name', settings.SITE_NAME)})")
        category = post.get("category") or {}
        _text(item, "category", category.get("name", "General"))
        for tag in post.get("tags", []):
            _text(item, "category", tag)
        published = as_utc(post.get("published_at")) or datetime.now(timezone.utc)
        _text(item, "pubDate", format_datetime(published))
        image = post.get("featured_image_url")
        if image:
            if not image.startswith("http"):
                image = f"{site}{image}"
            ET.SubElement(item, "enclosure", {"url": image, "type": "image/jpeg", "length": "0"})
    return _to_xml(rss)


def atom_feed(posts: list) -> str:
    ET.register_namespace("", ATOM_NS)
    site = settings.SITE_URL

    def q(tag):
        return f"{{{ATOM_NS}}}{tag}"

    feed = ET.Element(q("feed"))
    _text(feed, q("title"), settings.SITE_NAME)
    _text(feed, q("subtitle"), settings.SITE_DESCRIPTION)
    ET.SubElement(feed, q("link"), {"href": f"{site}/api/feed/atom", "rel": "self"})
    ET.SubElement(feed, q("link"), {"href": f"{site}/"})
    _text(feed, q("id"), f"{site}/")
    newest = posts[0].get("updated_at") or posts[0].get("published_at") if posts else None
    _text(feed, q("updated"), _iso(newest) or datetime.now(timezone.utc).isoformat())

    for post in posts:
        entry = ET.SubElement(feed, q("entry"))
        link = post_url(post)
        _text(entry, q("title"), post.get("title") or "Untitled")
        ET.SubElement(entry, q("link"), {"href": link})
        _text(entry, q("id"), link)
        _text(entry, q("published"), _iso(post.get("published_at")))
        _text(entry, q("updated"), _iso(post.get("updated_at") or post.get("published_at")))
        author_el = ET.SubElement(entry, q("author"))
        _text(author_el, q("name"), (post.get("author") or {}).get("name", settings.SITE_NAME))
        _text(entry, q("summary"), post.get("excerpt") or make_excerpt(post.get("content", "")))
        _text(entry, q("content"), absolute_urls(post.get("content", "")), type="html")
        category = post.get("category")
        if category:
            ET.SubElement(entry, q("category"), {"term": category.get("name", "")})
    return _to_xml(feed)


STATIC_PAGES = [
    ("", "daily", "1.0"),
    ("/blog", "daily", "0.9"),
    ("/categories", "weekly", "0.8"),
    ("/authors", "weekly", "0.7"),
    ("/store", "daily", "0.8"),
    ("/about", "monthly", "0.5"),
    ("/contact", "monthly", "0.5"),
]


def sitemap(posts: list, categories: list, authors: list) -> str:
    ET.register_namespace("", SITEMAP_NS)
    site = settings.SITE_URL

    urlset = ET.Element(f"{{{SITEMAP_NS}}}urlset")

    def add(loc, lastmod=None, changefreq="weekly", priority="0.5"):
        url = ET.SubElement(urlset, f"{{{SITEMAP_NS}}}url")
        _text(url, f"{{{SITEMAP_NS}}}loc", loc)
        if lastmod:
            _text(url, f"{{{SITEMAP_NS}}}lastmod", as_utc(lastmod).date().isoformat())
        _text(url, f"{{{SITEMAP_NS}}}changefreq", changefreq)
        _text(url, f"{{{SITEMAP_NS}}}priority", priority)

    for path, freq, priority in STATIC_PAGES:
        add(f"{site}{path}", changefreq=freq, priority=priority)
    for post in posts:
        add(post_url(post), post.get("updated_at") or post.get("published_at"), "weekly", "0.8")
    for category in categories:
        add(f"{site}/category/{category['slug']}", category.get("updated_at"), "weekly", "0.6")
    for author in authors:
        ident = author.get("username") or str(author["_id"])
        add(f"{site}/author/{ident}", author.get("updated_at"), "weekly", "0.5")
    return _to_xml(urlset)


def robots_txt() -> str:
    site = settings.SITE_URL
    return "\n".join(
        [
            "User-agent: *",
            "Allow: /",
            "Disallow: /api/",
            "Disallow: /dashboard/",
            "Disallow: /login",
            "Disallow: /register",
            "Allow: /api/feed/",
            "",
            f"Sitemap: {site}/sitemap.xml",
            "",
        ]
    )
