"""Client for fetching and parsing Stanford Encyclopedia of Philosophy entries."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, List, Optional

from lxml import etree
from lxml import html as lxml_html
from lxml.html import HtmlElement

from sep_rag.clients.base import BaseHttpClient, ClientError
from sep_rag.config import SepRagConfig
from sep_rag.exceptions import FetchError, ParseError
from sep_rag.models import Article, ArticleSection, RssFeedItem
from sep_rag.preprocessing.figures import process_figures_in_content
from sep_rag.preprocessing.markup import element_text, inner_html, outer_html
from sep_rag.preprocessing.text import normalise_text

logger = logging.getLogger(__name__)

_HEADING_TAGS = ("h2", "h3", "h4", "h5", "h6")
_SECTION_HEADINGS = " | ".join(f'//*[@id="main-text"]//{tag}[@id]' for tag in _HEADING_TAGS)
_SECTION_NUMBER = re.compile(r"^([\d.]+)\s+")
_ENTRY_LINK = re.compile(r"/entries/([^/.]+)")
_RSS_ENTRY_LINK = re.compile(r"/entries/([^/]+)")
_RELATED_STRIP = re.compile(r"[./]")


def parse_section_heading(text: str) -> tuple[str, str]:
    """Split ``"2.2 Heading"`` into ``("2.2", "Heading")``.

    Headings without a leading number keep their full text and an empty number.
    """

    full = text.strip()
    match = _SECTION_NUMBER.match(full)
    if not match:
        return "", full
    number = match.group(1).strip()
    if number.endswith("."):
        number = number[:-1]
    rest = full[len(number):]
    if rest.startswith("."):
        rest = rest[1:]
    return number, rest.strip()


def _is_section_heading(element: HtmlElement) -> bool:
    return (
        isinstance(element.tag, str)
        and element.tag.lower() in _HEADING_TAGS
        and bool(element.get("id"))
    )


def _section_content(heading: HtmlElement) -> str:
    """Collect the markup between ``heading`` and the next section heading."""

    parts: List[str] = [heading.tail or ""]
    for sibling in heading.itersiblings():
        if _is_section_heading(sibling):
            break
        parts.append(outer_html(sibling, with_tail=True))
    return "".join(parts)


def _meta(page: HtmlElement, name: str) -> List[str]:
    return [value for value in page.xpath(f'//meta[@name="{name}"]/@content') if value]


def parse_article_page(article_id: str, markup: str) -> Article:
    """Parse an entry page into an :class:`Article` without figure processing."""

    if not markup.strip():
        raise ParseError(f"Empty page for article {article_id}")
    try:
        page = lxml_html.fromstring(markup)
    except (etree.ParserError, ValueError) as exc:
        raise ParseError(f"Could not parse article {article_id}: {exc}") from exc

    titles = _meta(page, "DC.title")
    title = titles[0] if titles else "No Title"
    issued = _meta(page, "DCTERMS.issued")
    modified = _meta(page, "DCTERMS.modified")

    preamble_nodes = page.xpath('//*[@id="preamble"]')
    preamble = inner_html(preamble_nodes[0]) if preamble_nodes else ""

    sections: List[ArticleSection] = []
    for heading in page.xpath(_SECTION_HEADINGS):
        number, heading_text = parse_section_heading(element_text(heading))
        content = _section_content(heading)
        # Headings that only introduce subsections carry no content of their own.
        if not content.strip():
            continue
        sections.append(ArticleSection(number=number, heading=heading_text, content=content))

    if not preamble.strip() and not sections:
        raise ParseError(f"Article {article_id} has no preamble or sections")

    related: List[str] = []
    for href in page.xpath('//*[@id="related-entries"]//a/@href'):
        related_id = _RELATED_STRIP.sub("", href)
        if related_id:
            related.append(related_id)

    return Article(
        id=article_id,
        title=normalise_text(title),
        original_title=title,
        authors=_meta(page, "DC.creator"),
        preamble=preamble,
        sections=sections,
        related=related,
        created=issued[0] if issued else "",
        updated=modified[0] if modified else "",
    )


def parse_published_list(markup: str) -> List[str]:
    """Return entry ids linked from the published-entries page, first occurrence order."""

    page = lxml_html.fromstring(markup)
    seen: Dict[str, None] = {}
    for href in page.xpath('//*[@id="content"]//a[contains(@href, "/entries/")]/@href'):
        match = _ENTRY_LINK.search(href)
        if match:
            seen.setdefault(match.group(1), None)
    return list(seen)


def _parse_pub_date(value: str) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.warning("Unparseable RSS pubDate %r", value)
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_rss_feed(payload: bytes) -> List[RssFeedItem]:
    """Return one item per entry id, keeping the most recent ``pubDate``."""

    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    root = etree.fromstring(payload, parser=parser)
    latest: Dict[str, RssFeedItem] = {}
    for item in root.iter("item"):
        link = (item.findtext("link") or "").strip()
        if "/entries/" not in link:
            continue
        match = _RSS_ENTRY_LINK.search(link)
        if not match:
            continue
        entry = RssFeedItem(
            article_id=match.group(1),
            pub_date=_parse_pub_date((item.findtext("pubDate") or "").strip()),
        )
        existing = latest.get(entry.article_id)
        if existing is None or entry.pub_date > existing.pub_date:
            latest[entry.article_id] = entry
    return list(latest.values())


class SepClient(BaseHttpClient):
    """Fetch entries, the published-entries list and the RSS feed."""

    BASE_URL = "https://plato.stanford.edu"

    @classmethod
    def from_config(cls, config: SepRagConfig) -> "SepClient":
        return cls(
            session=config.build_session(),
            base_url=config.sep_url,
            timeout=config.request_timeout_s,
        )

    def article_url(self, article_id: str) -> str:
        return f"{self.base_url}/entries/{article_id}/"

    def fetch_article(self, article_id: str) -> Article:
        """Fetch an entry and normalize the figures of its preamble and sections."""

        try:
            response = self._request("GET", self.article_url(article_id))
        except ClientError as exc:
            raise FetchError(f"Failed to fetch article {article_id}: {exc}") from exc

        article = parse_article_page(article_id, response.text)

        figdesc: Dict[str, Optional[str]] = {}

        def fetch_figdesc() -> Optional[str]:
            if "page" not in figdesc:
                figdesc["page"] = self.fetch_figure_descriptions_page(article_id)
            return figdesc["page"]

        article.preamble = process_figures_in_content(article.preamble, fetch_figdesc)
        for section in article.sections:
            section.content = process_figures_in_content(section.content, fetch_figdesc)

        logger.info(
            "Fetched article %s: %d sections, %d related",
            article_id,
            len(article.sections),
            len(article.related),
        )
        return article

    def fetch_figure_descriptions_page(self, article_id: str) -> Optional[str]:
        """Return the entry's ``figdesc.html`` page, or ``None`` when unavailable."""

        url = f"{self.article_url(article_id)}figdesc.html"
        try:
            response = self._request("GET", url)
        except ClientError as exc:
            logger.debug("No figure description page for %s: %s", article_id, exc)
            return None
        return response.text

    def fetch_article_ids(self) -> List[str]:
        try:
            response = self._request("GET", "/published.html")
        except ClientError as exc:
            raise FetchError(f"Failed to fetch the published entries list: {exc}") from exc
        ids = parse_published_list(response.text)
        logger.info("Found %d published entries", len(ids))
        return ids

    def fetch_rss_articles(self) -> List[RssFeedItem]:
        try:
            response = self._request("GET", "/rss/sep.xml")
        except ClientError as exc:
            raise FetchError(f"Failed to fetch the RSS feed: {exc}") from exc
        try:
            return parse_rss_feed(response.content)
        except etree.XMLSyntaxError as exc:
            raise ParseError(f"Malformed RSS feed: {exc}") from exc
