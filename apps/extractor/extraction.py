"""
Content Extraction (readability-lxml)

Turns a fetched HTML page into the readable article block plus metadata.
Metadata prefers Open Graph, then Twitter cards, then generic meta tags,
then whatever readability itself guessed.
"""

import logging
import re
from typing import Optional
from urllib.parse import urljoin, urlsplit

from lxml import etree
from lxml import html as lxml_html
from readability import Document

from utils.errors import ExternalServiceError
from utils.schemas import ExtractedContent
from utils.text import html_to_text

logger = logging.getLogger(__name__)

EXCERPT_LENGTH = 300

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>", re.IGNORECASE)


def _parse(page: str) -> lxml_html.HtmlElement:
    # lxml refuses str input that still carries an encoding declaration
    return lxml_html.document_fromstring(_XML_DECLARATION.sub("", page, count=1))


def _first(values: list) -> Optional[str]:
    for value in values:
        text = str(value).strip()
        if text:
            return text
    return None


def get_meta_content(
    tree: lxml_html.HtmlElement,
    prop: str,
    fallback_name: Optional[str] = None,
) -> Optional[str]:
    """Look a value up as og:*, then twitter:*, then a plain <meta name>."""
    value = _first(tree.xpath("//meta[@property=$p]/@content", p=prop))
    if value:
        return value

    if prop.startswith("og:"):
        twitter = "twitter:" + prop[len("og:"):]
        value = _first(
            tree.xpath("//meta[@name=$n or @property=$n]/@content", n=twitter)
        )
        if value:
            return value

    if fallback_name:
        value = _first(tree.xpath("//meta[@name=$n]/@content", n=fallback_name))
        if value:
            return value

    return None


def _excerpt(summary_tree: lxml_html.HtmlElement) -> Optional[str]:
    for paragraph in summary_tree.iter("p"):
        text = " ".join(paragraph.text_content().split())
        if text:
            return text[:EXCERPT_LENGTH]
    return None


def _site_name_from_url(url: str) -> Optional[str]:
    host = urlsplit(url).hostname
    if not host:
        return None
    return host[4:] if host.startswith("www.") else host


def extract_content(page: str, url: str) -> ExtractedContent:
    """Run readability over a page and collect its metadata.

    Raises:
        ExternalServiceError: If the page cannot be parsed or has no readable content
    """
    try:
        tree = _parse(page)
        document = Document(page, url=url)
        content = document.summary(html_partial=True)
        guessed_title = document.short_title() or document.title()
    except (etree.ParserError, ValueError) as e:
        raise ExternalServiceError("Readability", f"failed to parse page: {e}", e) from e
    except Exception as e:
        # readability.readability.Unparseable and lxml internals
        raise ExternalServiceError("Readability", f"failed to extract article content: {e}", e) from e

    text_content = html_to_text(content)
    if not text_content:
        raise ExternalServiceError("Readability", "failed to extract content from URL")

    excerpt = _excerpt(lxml_html.fragment_fromstring(content, create_parent="div"))

    title = get_meta_content(tree, "og:title") or guessed_title or "Untitled"
    description = get_meta_content(tree, "og:description", "description") or excerpt
    site_name = (
        get_meta_content(tree, "og:site_name", "application-name")
        or _site_name_from_url(url)
    )
    image_url = get_meta_content(tree, "og:image", "image") or _first(
        tree.xpath("//link[@rel='image_src']/@href")
    )
    if image_url:
        image_url = urljoin(url, image_url)

    byline = get_meta_content(tree, "article:author", "author")
    language = _first(tree.xpath("/html/@lang"))

    logger.debug(
        "Content extracted",
        extra={"url": url, "title": title, "length": len(text_content)},
    )

    return ExtractedContent(
        title=title,
        content=content,
        text_content=text_content,
        excerpt=excerpt,
        byline=byline,
        site_name=site_name,
        description=description,
        image_url=image_url,
        language=language.split("-")[0].lower() if language else None,
    )
