"""Playback sessions: server selection, broken reports and resume state."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field

from pydantic import ValidationError

from ..models import ContentItem, ResumeState
from .session_cache import SessionCache
from .streaming import ServerRegistry, StreamingServer

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PlaybackSession:
    """Mutable state of one watch interaction."""

    item: ContentItem
    active_server_id: str
    season: int = 1
    episode: int = 1
    broken_server_ids: set[str] = field(default_factory=set)

    @property
    def content_id(self) -> str:
        return self.item.id

    def resume_state(self) -> ResumeState:
        return ResumeState(
            season=self.season, episode=self.episode, server_id=self.active_server_id
        )


class PlaybackManager:
    """Owns active playback sessions keyed by content id.

    Every mutation persists ``(season, episode, server)`` under the content
    id so a later ``open`` of the same title resumes where it stopped. The
    persisted tuple outlives ``close``.
    """

    def __init__(
        self,
        registry: ServerRegistry,
        cache: SessionCache,
        *,
        autoplay_delay: float = 5.0,
    ):
        self._registry = registry
        self._cache = cache
        self._autoplay_delay = autoplay_delay
        self._sessions: dict[str, PlaybackSession] = {}
        self._autoplay: dict[str, asyncio.Task[None]] = {}

    @property
    def registry(self) -> ServerRegistry:
        return self._registry

    @staticmethod
    def resume_key(content_id: str) -> str:
        return f"resume:{content_id}"

    async def open(self, item: ContentItem) -> PlaybackSession:
        """Start (or rejoin) playback for the item, restoring resume state."""

        existing = self._sessions.get(item.id)
        if existing is not None:
            return existing

        resume = await self.get_resume_state(item.id)
        if resume is not None and resume.server_id in self._registry:
            server = self._registry.get(resume.server_id)
        else:
            server = self._registry.select_best()
        if server is None:
            raise RuntimeError("No streaming servers configured")

        session = PlaybackSession(item=item, active_server_id=server.id)
        if resume is not None:
            session.season = resume.season
            session.episode = resume.episode
        self._sessions[item.id] = session
        await self._persist(session)
        return session

    def get_session(self, content_id: str) -> PlaybackSession:
        try:
            return self._sessions[content_id]
        except KeyError:
            raise KeyError(f"No active playback for {content_id}") from None

    def active_server(self, content_id: str) -> StreamingServer:
        return self._registry.get(self.get_session(content_id).active_server_id)

    def embed_url(self, content_id: str) -> str:
        session = self.get_session(content_id)
        return self._registry.url_for(
            self._registry.get(session.active_server_id),
            session.item,
            session.season,
            session.episode,
        )

    async def report_broken(
        self, content_id: str, server_id: str | None = None
    ) -> PlaybackSession:
        """Mark a server (the active one by default) broken and reselect."""

        session = self.get_session(content_id)
        target = server_id or session.active_server_id
        self._registry.get(target)

        session.broken_server_ids.add(target)
        if self._registry.ids() <= session.broken_server_ids:
            logger.info("All servers reported broken for %s, resetting", content_id)
            session.broken_server_ids.clear()

        server = self._registry.select_best(session.broken_server_ids)
        if server is None:
            raise RuntimeError("No streaming servers configured")
        session.active_server_id = server.id
        await self._persist(session)
        return session

    async def select_server(self, content_id: str, server_id: str) -> PlaybackSession:
        """Switch explicitly; an explicit choice clears the server's broken mark."""

        session = self.get_session(content_id)
        server = self._registry.get(server_id)
        session.broken_server_ids.discard(server.id)
        session.active_server_id = server.id
        await self._persist(session)
        return session

    async def set_episode(
        self, content_id: str, season: int, episode: int
    ) -> PlaybackSession:
        """Move the cursor; values are clamped to 1 but have no upper bound."""

        session = self.get_session(content_id)
        session.season = max(1, int(season))
        session.episode = max(1, int(episode))
        await self._persist(session)
        return session

    async def next_episode(self, content_id: str) -> PlaybackSession:
        session = self.get_session(content_id)
        return await self.set_episode(content_id, session.season, session.episode + 1)

    async def previous_episode(self, content_id: str) -> PlaybackSession:
        session = self.get_session(content_id)
        return await self.set_episode(content_id, session.season, session.episode - 1)

    def start_autoplay(self, content_id: str, delay: float | None = None) -> None:
        """Advance to the next episode once ``delay`` seconds have passed."""

        session = self.get_session(content_id)
        if session.item.kind != "series":
            raise ValueError("Autoplay is only available for series")
        self.cancel_autoplay(content_id)
        resolved_delay = self._autoplay_delay if delay is None else max(0.0, delay)
        self._autoplay[content_id] = asyncio.create_task(
            self._autoplay_after(content_id, resolved_delay)
        )

    def cancel_autoplay(self, content_id: str) -> bool:
        task = self._autoplay.pop(content_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def is_autoplaying(self, content_id: str) -> bool:
        task = self._autoplay.get(content_id)
        return task is not None and not task.done()

    async def _autoplay_after(self, content_id: str, delay: float) -> None:
        current = asyncio.current_task()
        try:
            await asyncio.sleep(delay)
            if content_id in self._sessions:
                await self.next_episode(content_id)
        finally:
            if self._autoplay.get(content_id) is current:
                del self._autoplay[content_id]

    async def close(self, content_id: str) -> None:
        """Drop the in-memory session; the resume tuple stays persisted."""

        task = self._autoplay.pop(content_id, None)
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._sessions.pop(content_id, None)

    async def shutdown(self) -> None:
        for content_id in list(self._sessions):
            await self.close(content_id)

    async def get_resume_state(self, content_id: str) -> ResumeState | None:
        cached = await self._cache.get(self.resume_key(content_id))
        if cached is None:
            return None
        try:
            return ResumeState.model_validate(cached)
        except ValidationError:
            logger.warning("Ignoring malformed resume state for %s", content_id)
            return None

    async def _persist(self, session: PlaybackSession) -> None:
        await self._cache.set(
            self.resume_key(session.content_id), session.resume_state().to_payload()
        )
