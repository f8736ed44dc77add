from __future__ import annotations

import re
from typing import Any

from telethon.sessions import StringSession
from telethon.sync import TelegramClient

from job_relay.models import PermalinkParts, RawPost, SourceEntity

FEED = "telegram"


def normalize_channel(raw: str) -> str:
    """``https://t.me/sydjobs`` and ``@sydjobs`` both become ``sydjobs``."""
    trimmed = raw.strip()
    match = re.search(r"t\.me/([^/?#]+)", trimmed, re.IGNORECASE)
    name = match.group(1) if match else trimmed
    return name.lstrip("@")


class TelegramAdapter:
    """Channel and group history read through an already authorized user session.

    Login is never interactive: ``session`` must be a saved ``StringSession``.
    """

    feed = FEED

    def __init__(self, api_id: int, api_hash: str, session: str, *, client: Any | None = None) -> None:
        if client is None:
            if not api_id or not api_hash:
                raise ValueError("TELEGRAM_API_ID and TELEGRAM_API_HASH are required for telegram targets")
            if not session:
                raise ValueError("TELEGRAM_SESSION is required for telegram targets")
        self._api_id = api_id
        self._api_hash = api_hash
        self._session = session
        self._client = client
        self._peers: dict[str, Any] = {}

    def _connected(self) -> Any:
        if self._client is None:
            client = TelegramClient(StringSession(self._session), self._api_id, self._api_hash)
            client.connect()
            if not client.is_user_authorized():
                client.disconnect()
                raise ValueError("TELEGRAM_SESSION is not authorized")
            self._client = client
        return self._client

    def resolve(self, target: str) -> SourceEntity:
        name = normalize_channel(target)
        if not name:
            raise ValueError(f"empty telegram target: {target!r}")

        client = self._connected()
        peer = client.get_entity(name)
        # Marked id: channels and supergroups carry the -100 prefix.
        peer_id = client.get_peer_id(peer)
        entity = SourceEntity(
            id=f"{FEED}:{peer_id}",
            feed=FEED,
            handle=getattr(peer, "username", None) or None,
            title=getattr(peer, "title", None) or None,
        )
        self._peers[entity.id] = peer
        return entity

    def fetch(self, entity: SourceEntity, limit: int) -> list[RawPost]:
        client = self._connected()
        peer_id = entity.id.split(":", 1)[1]
        peer = self._peers.get(entity.id) or int(peer_id)
        messages = client.get_messages(peer, limit=limit)

        posts: list[RawPost] = []
        for message in messages:
            if not message.id or message.id <= 0:
                continue
            posts.append(
                RawPost(
                    source_entity_id=entity.id,
                    sequence_number=message.id,
                    text=getattr(message, "message", None) or "",
                    timestamp=getattr(message, "date", None),
                    permalink_parts=PermalinkParts(
                        feed=FEED,
                        handle=entity.handle,
                        entity_id=peer_id,
                        sequence_number=message.id,
                    ),
                )
            )
        return posts

    def close(self) -> None:
        if self._client is not None:
            self._client.disconnect()
