"""
auth/observer.py -- Client-side "current user" cell kept in step with provider sessions.

SessionObserver is the long-lived client context that mirrors the provider's
session into a local Profile:

  current_user  -- Profile | None
  loading       -- True until the first transition has been applied

Protocol:
  start()   subscribe to provider session changes, then look up an existing
            session. With one, fetch its profile; loading clears when that
            fetch completes (either way). Without one, loading clears at once.
            An event delivered while the lookup runs supersedes its result.
  events    every provider event is queued and handled one at a time in
            delivery order. A session -> fetch the profile and replace
            current_user. No session -> clear current_user. Each transition
            clears loading.
  close()   unsubscribe and cancel in-flight work. Nothing is written after.

Ordering: fetches run concurrently and can resolve out of order. Each
delivered event bumps a generation counter; a fetch whose generation is no
longer current when it resolves is discarded. The cell therefore always ends
at the profile of the most recently delivered event.

Provider callbacks may fire on any thread (GoTrue calls run in worker
threads); they only hand the event to the loop via call_soon_threadsafe.

Usage:
    async with SessionObserver(client, HttpProfileFetcher(api_url)) as observer:
        ...
        observer.current_user

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import requests

from auth.models import Profile, Session, SessionEvent
from auth.provider import IdentityProvider, Subscription
from auth.roles import parse_role

logger = logging.getLogger("quillpress.auth.observer")

ProfileFetcher = Callable[[Session], Awaitable[Profile | None]]


class SessionObserver:
    def __init__(self, provider: IdentityProvider, fetch_profile: ProfileFetcher) -> None:
        self.provider = provider
        self._fetch_profile = fetch_profile
        self.current_user: Profile | None = None
        self.loading = True
        self._generation = 0
        self._closed = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[SessionEvent] | None = None
        self._subscription: Subscription | None = None
        self._consumer: asyncio.Task | None = None
        self._fetches: set[asyncio.Task] = set()

    async def __aenter__(self) -> SessionObserver:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def generation(self) -> int:
        return self._generation

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._consumer is not None:
            raise RuntimeError("SessionObserver already started")
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._subscription = self.provider.on_session_change(self._on_session_change)
        self._consumer = asyncio.create_task(self._consume())

        generation = self._generation
        session = await asyncio.to_thread(self.provider.get_session)
        if self._closed:
            return
        if session is None:
            self.loading = False
            return
        if generation != self._generation or not self._queue.empty():
            # An event arrived during the lookup; it owns the cell now.
            logger.debug("Discarding initial session read (generation %d < %d)", generation, self._generation)
            self.loading = False
            return
        self._spawn_fetch(generation, session, initial=True)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
        pending = list(self._fetches)
        if self._consumer is not None:
            pending.append(self._consumer)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._fetches.clear()

    async def wait_idle(self) -> None:
        """Return once every delivered event has been applied or discarded."""
        while True:
            # Events scheduled with call_soon_threadsafe land on the next tick.
            await asyncio.sleep(0)
            if self._queue is not None:
                await self._queue.join()
            if not self._fetches:
                return
            await asyncio.gather(*list(self._fetches), return_exceptions=True)

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def _on_session_change(self, event: SessionEvent) -> None:
        if self._closed or self._loop is None or self._queue is None:
            return
        self._loop.call_soon_threadsafe(self._enqueue, event)

    def _enqueue(self, event: SessionEvent) -> None:
        if not self._closed and self._queue is not None:
            self._queue.put_nowait(event)

    async def _consume(self) -> None:
        assert self._queue is not None
        while True:
            event = await self._queue.get()
            try:
                self._apply(event)
            finally:
                self._queue.task_done()

    def _apply(self, event: SessionEvent) -> None:
        self._generation += 1
        logger.debug("Session event %s (generation %d)", event.type.value, self._generation)
        if event.session is None:
            self.current_user = None
            self.loading = False
            return
        self._spawn_fetch(self._generation, event.session)

    # ------------------------------------------------------------------
    # Profile fetches
    # ------------------------------------------------------------------

    def _spawn_fetch(self, generation: int, session: Session, initial: bool = False) -> None:
        task = asyncio.create_task(self._refresh(generation, session, initial))
        self._fetches.add(task)
        task.add_done_callback(self._fetches.discard)

    async def _refresh(self, generation: int, session: Session, initial: bool) -> None:
        try:
            profile = await self._fetch_profile(session)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Profile fetch for %s failed", session.subject_id)
            profile = None

        if self._closed:
            return
        if generation != self._generation:
            logger.debug("Discarding stale profile fetch (generation %d < %d)", generation, self._generation)
            if initial:
                self.loading = False
            return
        self.current_user = profile
        self.loading = False


# ---------------------------------------------------------------------------
# Read-endpoint fetcher
# ---------------------------------------------------------------------------


def profile_from_dict(data: dict[str, Any]) -> Profile:
    return Profile(
        id=data["id"],
        email=data["email"],
        name=data.get("name"),
        role=parse_role(data["role"]),
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
    )


class HttpProfileFetcher:
    """ProfileFetcher backed by GET {base_url}/api/v1/users/{id}.

    The session's access token is sent as a Bearer header. Anything but a
    200 with a well-formed body yields None.
    """

    def __init__(self, base_url: str, http: requests.Session | None = None, timeout: float = 10) -> None:
        self.base_url = base_url.rstrip("/")
        self.http = http or requests.Session()
        self.timeout = timeout

    async def __call__(self, session: Session) -> Profile | None:
        return await asyncio.to_thread(self._fetch, session)

    def _fetch(self, session: Session) -> Profile | None:
        url = f"{self.base_url}/api/v1/users/{session.subject_id}"
        try:
            resp = self.http.get(url, headers={"Authorization": f"Bearer {session.access_token}"}, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Profile fetch for %s failed: %s", session.subject_id, e)
            return None
        if resp.status_code != 200:
            logger.info("Profile fetch for %s returned %d", session.subject_id, resp.status_code)
            return None
        try:
            return profile_from_dict(resp.json())
        except (ValueError, KeyError) as e:
            logger.warning("Malformed profile body for %s: %s", session.subject_id, e)
            return None
