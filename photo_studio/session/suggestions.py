"""Suggestion cache: local prompt filtering plus the asynchronous refill protocol.

Three remote flows feed the cache and all of them tolerate overlapping,
out-of-order responses:

- bulk refresh replaces the whole corpus; the most recently *submitted*
  request wins, tracked with a monotonically increasing token;
- live typing goes through a :class:`Debouncer` and shares that token, so a
  typing fetch and a bulk refresh supersede each other by submission order;
- top-up asks for one replacement after a dismissal and is dropped if the
  corpus was replaced while it was in flight.
"""
import asyncio
import logging
from typing import Awaitable, Callable, FrozenSet, Iterable, List, Optional, Set

from ..errors import RemoteError
from .models import Outcome

logger = logging.getLogger(__name__)

DEFAULT_MAX_MATCHES = 5
DEFAULT_DEBOUNCE_SECONDS = 0.75

# exclude list -> suggestions
BulkFetch = Callable[[List[str]], Awaitable[List[str]]]
# exclude list -> one suggestion
SingleFetch = Callable[[List[str]], Awaitable[str]]
# prompt text -> suggestions
TextFetch = Callable[[str], Awaitable[List[str]]]
ErrorHandler = Callable[[RemoteError], None]


class Debouncer:
    """Run only the most recently scheduled callback, after a quiet period.

    Scheduling again while the timer is still sleeping cancels it. Once the
    timer elapses the callback is detached from the timer, so a later
    ``cancel()`` never interrupts a fetch that is already on the wire.
    """

    def __init__(self, delay: float = DEFAULT_DEBOUNCE_SECONDS):
        self.delay = delay
        self._timer: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def schedule(self, callback: Callable[[], Awaitable[Outcome]]) -> asyncio.Task:
        self.cancel()
        task = asyncio.get_running_loop().create_task(self._run(callback))
        self._timer = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, callback: Callable[[], Awaitable[Outcome]]) -> Outcome:
        await asyncio.sleep(self.delay)
        if self._timer is asyncio.current_task():
            self._timer = None
        return await callback()

    def cancel(self):
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def join(self):
        """Wait for every scheduled or in-flight callback to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def _unique(items: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


class SuggestionCache:
    """Live and dismissed suggestions for the current source image."""

    def __init__(self, max_matches: int = DEFAULT_MAX_MATCHES, debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS):
        self.max_matches = max_matches
        self.debouncer = Debouncer(debounce_seconds)
        self._live: List[str] = []
        self._dismissed: Set[str] = set()
        # Token of the last submitted corpus request (bulk or typing).
        self._token = 0
        # Bumped whenever the corpus is replaced; guards top-up responses.
        self._generation = 0

    # ------------------------------------------------------------------
    # Local state
    # ------------------------------------------------------------------
    @property
    def live(self) -> List[str]:
        return list(self._live)

    @property
    def dismissed(self) -> FrozenSet[str]:
        return frozenset(self._dismissed)

    @property
    def token(self) -> int:
        return self._token

    def set_corpus(self, suggestions: Iterable[str]):
        """Replace the live corpus (deduplicated, input order kept) and forget dismissals."""
        cleaned = (s.strip() for s in suggestions if s and s.strip())
        self._live = _unique(cleaned)
        self._dismissed = set()
        self._generation += 1

    def clear_live(self):
        self._live = []
        self._generation += 1

    def reset(self):
        """Forget everything and invalidate every outstanding request."""
        self.debouncer.cancel()
        self._live = []
        self._dismissed = set()
        self._token += 1
        self._generation += 1

    def filter(self, query: str) -> List[str]:
        """Return up to ``max_matches`` live suggestions matching any query word.

        Words of one character are ignored. A blank query means nothing has
        been typed yet, so nothing is shown.
        """
        if not query or not query.strip():
            return []
        terms = [term for term in query.lower().split() if len(term) > 1]
        if not terms:
            return []
        matches = [s for s in self._live if any(term in s.lower() for term in terms)]
        return matches[:self.max_matches]

    def dismiss(self, suggestion: str) -> bool:
        """Move ``suggestion`` from live to dismissed. Returns True if it was live."""
        removed = suggestion in self._live
        if removed:
            self._live.remove(suggestion)
        self._dismissed.add(suggestion)
        return removed

    def exclusions(self) -> List[str]:
        """Everything a replacement must not collide with: live plus dismissed."""
        return _unique(self._live + sorted(self._dismissed))

    # ------------------------------------------------------------------
    # Remote refill
    # ------------------------------------------------------------------
    def _submit(self) -> int:
        self._token += 1
        return self._token

    def is_current(self, token: int) -> bool:
        return token == self._token

    async def bulk_refresh(self, fetch: BulkFetch, include_live: bool = False) -> Outcome:
        """Fetch a whole new corpus; apply it only if no newer request was submitted.

        Raises:
            RemoteError: if the current request fails. Failures of superseded
                requests are dropped like any other stale response.
        """
        self.debouncer.cancel()
        token = self._submit()
        dismissed = frozenset(self._dismissed)
        exclude = self.exclusions() if include_live else sorted(dismissed)
        try:
            suggestions = await fetch(exclude)
        except RemoteError:
            if not self.is_current(token):
                logger.debug(f"Ignoring failure of superseded bulk refresh #{token}")
                return Outcome.STALE
            raise
        if not self.is_current(token):
            logger.debug(f"Dropping stale bulk refresh #{token} (current #{self._token})")
            return Outcome.STALE
        dismissed = dismissed | self._dismissed
        self.set_corpus(s for s in suggestions if s and s.strip() not in dismissed)
        return Outcome.APPLIED

    async def top_up(self, fetch: SingleFetch) -> Outcome:
        """Request one replacement suggestion and append it if it does not collide.

        A collision leaves the slot empty; it is never retried.
        """
        generation = self._generation
        try:
            suggestion = await fetch(self.exclusions())
        except RemoteError:
            if generation != self._generation:
                logger.debug("Ignoring failure of top-up for a replaced corpus")
                return Outcome.STALE
            raise
        if generation != self._generation:
            logger.debug("Dropping top-up for a replaced corpus")
            return Outcome.STALE
        text = (suggestion or "").strip()
        if not text or text in self._live or text in self._dismissed:
            logger.info(f"Top-up suggestion collided, leaving slot empty: {text!r}")
            return Outcome.SKIPPED
        self._live.append(text)
        return Outcome.APPLIED

    def schedule_typing(self, text: str, fetch: TextFetch, on_error: Optional[ErrorHandler] = None) -> Optional[asyncio.Task]:
        """Restart the quiet-period timer for ``text``.

        Blank text clears the live suggestions immediately, invalidates any
        in-flight typing fetch and schedules nothing.
        """
        self.debouncer.cancel()
        if not text or not text.strip():
            self._token += 1
            self.clear_live()
            return None
        return self.debouncer.schedule(lambda: self._typing_fetch(text, fetch, on_error))

    async def _typing_fetch(self, text: str, fetch: TextFetch, on_error: Optional[ErrorHandler]) -> Outcome:
        token = self._submit()
        try:
            suggestions = await fetch(text)
        except RemoteError as exc:
            if not self.is_current(token):
                return Outcome.STALE
            logger.warning(f"Live suggestion fetch failed: {exc}")
            if on_error is not None:
                on_error(exc)
            return Outcome.FAILED
        if not self.is_current(token):
            logger.debug(f"Dropping stale typing suggestions #{token}")
            return Outcome.STALE
        self.set_corpus(suggestions)
        return Outcome.APPLIED
