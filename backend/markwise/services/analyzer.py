"""Website analyzer — fetch a page and let the LLM describe and tag it.

Steps:
1. Fetch the page HTML (httpx, redirects followed).
2. Pull title, meta/og description and favicon (BeautifulSoup) and a
   readable-text excerpt (readability-lxml, whole page as fallback).
3. Ask the LLM (the user's own model when one is configured) for a
   cleaned-up title, a one-sentence description and a few tags, preferring
   the user's existing tag names.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup
from readability import Document as ReadabilityDocument
from readability.readability import Unparseable

from markwise.services.llm import LLMEndpoint, LLMService

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are a bookmark librarian. Answer with a single JSON object with the "
    'keys "title", "description" and "tags" (a list of short tag names). '
    "No explanation."
)


class AnalyzerError(Exception):
    """Raised when a website cannot be analyzed."""


class WebsiteFetchError(AnalyzerError):
    """Raised when the page HTML cannot be downloaded."""


@dataclass(frozen=True, slots=True)
class PageContent:
    title: str
    description: str
    favicon: str
    text: str


@dataclass(frozen=True, slots=True)
class WebsiteAnalysis:
    title: str
    description: str
    favicon: str
    tags: list[str] = field(default_factory=list)


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _readable_text(html: str) -> str:
    """Main article text as picked by readability, or "" if it gives up."""
    try:
        article_html = ReadabilityDocument(html).summary(html_partial=True)
    except Unparseable:
        logger.debug("readability could not parse page, using full text")
        return ""
    return _collapse(BeautifulSoup(article_html, "html.parser").get_text(" "))


def extract_page_content(html: str, base_url: str, max_chars: int = 4000) -> PageContent:
    """Parse the bits of a page the LLM prompt needs."""
    soup = BeautifulSoup(html, "html.parser")

    title = ""
    og_title = soup.find("meta", attrs={"property": "og:title"})
    if soup.title and soup.title.string:
        title = soup.title.string.strip()
    elif og_title and og_title.get("content"):
        title = og_title["content"].strip()

    description = ""
    for attrs in ({"name": "description"}, {"property": "og:description"}):
        meta = soup.find("meta", attrs=attrs)
        if meta and meta.get("content"):
            description = meta["content"].strip()
            break

    favicon = ""
    for link in soup.find_all("link", href=True):
        rel = " ".join(link.get("rel") or []).lower()
        if "icon" in rel:
            favicon = urljoin(base_url, link["href"])
            break
    if not favicon:
        parsed = urlparse(base_url)
        favicon = f"{parsed.scheme}://{parsed.netloc}/favicon.ico"

    text = _readable_text(html)
    if not text:
        for tag in soup(["script", "style", "noscript", "template"]):
            tag.decompose()
        text = _collapse(soup.get_text(" "))

    return PageContent(
        title=title, description=description, favicon=favicon, text=text[:max_chars]
    )


def parse_llm_answer(raw: str) -> dict:
    """Decode the LLM's JSON object, tolerating a Markdown code fence."""
    text = raw.strip()
    fenced = re.match(r"^```(?:json)?\s*(.*?)\s*```$", text, re.DOTALL)
    if fenced:
        text = fenced.group(1)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise AnalyzerError(f"LLM returned invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise AnalyzerError("LLM answer is not a JSON object")
    return data


class WebsiteAnalyzer:
    __slots__ = (
        "_llm",
        "_fetch_timeout",
        "_max_chars",
        "_max_tags",
        "_user_agent",
        "_resolve_endpoint",
    )

    def __init__(
        self,
        llm_service: LLMService,
        fetch_timeout: float = 15.0,
        max_chars: int = 4000,
        max_tags: int = 5,
        user_agent: str = "MarkwiseBot/1.0",
        resolve_endpoint: Callable[[str], LLMEndpoint | None] | None = None,
    ) -> None:
        self._llm = llm_service
        self._fetch_timeout = fetch_timeout
        self._max_chars = max_chars
        self._max_tags = max_tags
        self._user_agent = user_agent
        self._resolve_endpoint = resolve_endpoint

    async def fetch_html(self, url: str) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=self._fetch_timeout,
                follow_redirects=True,
                headers={"User-Agent": self._user_agent},
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.text
        except httpx.HTTPStatusError as exc:
            raise WebsiteFetchError(
                f"Fetching {url} returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise WebsiteFetchError(f"Cannot fetch {url}: {exc}") from exc

    def _build_prompt(self, url: str, page: PageContent, known_tag_names: list[str]) -> str:
        known = ", ".join(known_tag_names) if known_tag_names else "(none)"
        return (
            f"Describe this website for a bookmark and pick at most {self._max_tags} tags.\n"
            "Reuse existing tag names whenever one fits; only invent a new tag "
            "when nothing fits.\n\n"
            f"Existing tags: {known}\n\n"
            f"URL: {url}\n"
            f"Page title: {page.title}\n"
            f"Page description: {page.description}\n"
            f"Page text: {page.text}"
        )

    async def analyze(
        self, url: str, known_tag_names: list[str], user_id: str
    ) -> WebsiteAnalysis:
        html = await self.fetch_html(url)
        page = extract_page_content(html, url, self._max_chars)
        endpoint = self._resolve_endpoint(user_id) if self._resolve_endpoint else None

        response = await self._llm.complete(
            prompt=self._build_prompt(url, page, known_tag_names),
            system=_SYSTEM_PROMPT,
            json_mode=True,
            endpoint=endpoint,
        )
        data = parse_llm_answer(response.text)

        tags = data.get("tags") or []
        if isinstance(tags, str):
            tags = re.split(r"[,\n]", tags)
        tags = [str(t).strip() for t in tags if t and str(t).strip()][: self._max_tags]

        analysis = WebsiteAnalysis(
            title=str(data.get("title") or page.title or url).strip(),
            description=str(data.get("description") or page.description).strip(),
            favicon=page.favicon,
            tags=tags,
        )
        logger.debug(
            "Analyzed %s for user %s via %s: %d tag(s)",
            url, user_id, response.backend, len(analysis.tags),
        )
        return analysis
