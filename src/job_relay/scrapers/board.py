from __future__ import annotations

import re
from urllib.parse import parse_qs, urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from job_relay.models import PermalinkParts, RawPost, SourceEntity
from job_relay.scrapers.base import build_client, get_response

FEED = "board"

_POST_QUERY_KEYS = ("wr_id", "document_srl", "no", "idx", "article_no", "uid")
# Paging and search parameters vary between listing views of the same board.
_LISTING_QUERY_KEYS = {"page", "findex", "sst", "sod", "sfl", "stx", "sca", "spt"}
_NAV_LINK_TEXTS = {
    "login",
    "logout",
    "register",
    "notice",
    "list",
    "prev",
    "next",
}


def _clean_spaces(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def infer_post_number(url: str) -> int | None:
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    for key in _POST_QUERY_KEYS:
        values = query.get(key)
        if values and values[0].strip().isdigit():
            return int(values[0].strip())

    path_match = re.search(r"/(\d{3,})(?:/)?$", parsed.path)
    if path_match:
        return int(path_match.group(1))
    return None


def belongs_to_board(url: str, board_url: str) -> bool:
    """True when ``url`` points into the board listed at ``board_url``.

    Same host, same or nested path, and the same board-identifying query values
    (``bo_table=jobs`` and the like). Sidebar links into sibling boards number
    their posts on another sequence and are excluded.
    """
    board = urlparse(board_url)
    link = urlparse(url)
    if link.netloc != board.netloc:
        return False

    board_path = board.path.rstrip("/")
    link_path = link.path.rstrip("/")
    if link_path != board_path and not link_path.startswith(f"{board_path}/"):
        return False

    link_query = parse_qs(link.query)
    for key, values in parse_qs(board.query).items():
        if key in _POST_QUERY_KEYS or key in _LISTING_QUERY_KEYS:
            continue
        if link_query.get(key, [None])[0] != values[0]:
            return False
    return True


def _extract_snippet(anchor) -> str:
    container = anchor.find_parent(["tr", "li", "div", "article"])
    if container is None:
        return ""
    return _clean_spaces(container.get_text(" ", strip=True))[:500]


def parse_board_posts(
    html: str,
    *,
    base_url: str,
    entity: SourceEntity,
    limit: int = 80,
) -> list[RawPost]:
    soup = BeautifulSoup(html, "html.parser")
    posts: list[RawPost] = []
    seen_numbers: set[int] = set()

    for anchor in soup.select("a[href]"):
        raw_title = _clean_spaces(anchor.get_text(" ", strip=True))
        if len(raw_title) < 2 or raw_title.casefold() in _NAV_LINK_TEXTS:
            continue

        href = urljoin(base_url, anchor.get("href", ""))
        if not href.startswith(("http://", "https://")) or not belongs_to_board(href, base_url):
            continue

        number = infer_post_number(href)
        if number is None or number in seen_numbers:
            continue

        snippet = _extract_snippet(anchor)
        if snippet.startswith(raw_title):
            snippet = snippet[len(raw_title) :].strip()
        text = f"{raw_title}\n{snippet}" if snippet else raw_title

        posts.append(
            RawPost(
                source_entity_id=entity.id,
                sequence_number=number,
                text=text,
                permalink_parts=PermalinkParts(
                    feed=FEED,
                    handle=entity.handle,
                    sequence_number=number,
                    path=href,
                ),
            )
        )
        seen_numbers.add(number)

        if len(posts) >= limit:
            break

    return posts


class BoardAdapter:
    """Listing pages of classic forum boards, one target per board URL."""

    feed = FEED

    def __init__(
        self,
        *,
        timeout_seconds: float = 20.0,
        user_agent: str = "job-relay/0.1",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = build_client(timeout_seconds=timeout_seconds, user_agent=user_agent, transport=transport)

    def resolve(self, target: str) -> SourceEntity:
        url = target.strip()
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(f"board target must be an http(s) URL: {target!r}")
        return SourceEntity(id=f"{FEED}:{url}", feed=FEED, handle=parsed.netloc, title=url)

    def fetch(self, entity: SourceEntity, limit: int) -> list[RawPost]:
        url = entity.title or entity.id.split(":", 1)[1]
        response = get_response(self._client, url)
        return parse_board_posts(response.text, base_url=url, entity=entity, limit=limit)

    def close(self) -> None:
        self._client.close()
