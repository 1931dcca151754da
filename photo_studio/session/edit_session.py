"""Edit session orchestrating history, suggestions and the remote service."""
import asyncio
import logging
import uuid
from typing import Dict, List, Optional, Union

from ..config import Settings
from ..errors import InvalidRequest, RemoteError, StudioError
from ..imaging import load_image_state
from ..presets import get_preset
from ..services.base import ASPECT_RATIOS, RemoteEditService
from .history import EditHistory
from .models import Flow, ImageState, OperationResult, Outcome, SessionSnapshot, SessionState
from .suggestions import DEFAULT_DEBOUNCE_SECONDS, DEFAULT_MAX_MATCHES, SuggestionCache

logger = logging.getLogger(__name__)


class EditSession:
    """
    One user's editing session over a single active image.

    All operations run on one event loop. Mutations of history and
    suggestions are synchronous; the only suspension points are remote
    calls. Public operations never raise for invalid requests or remote
    failures: they return an ``OperationResult`` and record the last error
    of each flow in ``errors``.
    """

    def __init__(
        self,
        service: RemoteEditService,
        session_id: Optional[str] = None,
        max_matches: int = DEFAULT_MAX_MATCHES,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        live_typing: bool = True,
    ):
        self.session_id = session_id or uuid.uuid4().hex
        self.service = service
        self.history = EditHistory()
        self.suggestions = SuggestionCache(max_matches=max_matches, debounce_seconds=debounce_seconds)
        self.live_typing = live_typing
        self.prompt: str = ""
        self.analysis: Optional[str] = None
        self.last_generated: Optional[ImageState] = None
        self._errors: Dict[Flow, str] = {}
        self._matches_hidden = False
        self._edit_in_flight = False
        # Bumped on every select_image; results for an older image are stale.
        self._image_generation = 0
        self._analysis_settled = False

    @classmethod
    def from_settings(
        cls,
        service: RemoteEditService,
        settings: Settings,
        session_id: Optional[str] = None,
        live_typing: bool = True,
    ) -> "EditSession":
        return cls(
            service,
            session_id=session_id,
            live_typing=live_typing,
            max_matches=settings.max_matches,
            debounce_seconds=settings.debounce_seconds,
        )

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        if self.history.current() is None:
            return SessionState.EMPTY
        if self._edit_in_flight:
            return SessionState.EDITING
        return SessionState.LOADED

    @property
    def busy(self) -> bool:
        return self._edit_in_flight

    @property
    def current_image(self) -> Optional[ImageState]:
        return self.history.current()

    @property
    def can_undo(self) -> bool:
        return self.history.can_undo()

    @property
    def can_redo(self) -> bool:
        return self.history.can_redo()

    @property
    def history_position(self) -> int:
        return self.history.cursor

    @property
    def live_suggestions(self) -> List[str]:
        return self.suggestions.live

    @property
    def dismissed_suggestions(self) -> List[str]:
        return sorted(self.suggestions.dismissed)

    @property
    def visible_suggestions(self) -> List[str]:
        """Live suggestions matching the prompt, unless the user just picked one."""
        if self._matches_hidden:
            return []
        return self.suggestions.filter(self.prompt)

    @property
    def errors(self) -> Dict[str, str]:
        return {flow.value: message for flow, message in self._errors.items()}

    def last_error(self, flow: Flow) -> Optional[str]:
        return self._errors.get(flow)

    def snapshot(self) -> SessionSnapshot:
        current = self.history.current()
        return SessionSnapshot(
            state=self.state,
            prompt=self.prompt,
            analysis=self.analysis,
            has_image=current is not None,
            mime_type=current.mime_type if current else None,
            history_length=len(self.history),
            history_position=self.history.cursor,
            can_undo=self.can_undo,
            can_redo=self.can_redo,
            busy=self.busy,
            live_suggestions=self.live_suggestions,
            visible_suggestions=self.visible_suggestions,
            dismissed_suggestions=self.dismissed_suggestions,
            errors=self.errors,
        )

    # ------------------------------------------------------------------
    # Result helpers
    # ------------------------------------------------------------------
    def _record_error(self, flow: Flow, error: StudioError):
        self._errors[flow] = str(error)

    def _fail(self, flow: Flow, error: StudioError) -> OperationResult:
        if isinstance(error, RemoteError):
            logger.warning(f"[{self.session_id}] {flow.value} failed: {error}")
        else:
            logger.info(f"[{self.session_id}] {flow.value} rejected: {error}")
        self._record_error(flow, error)
        return OperationResult.from_error(flow, error)

    def _succeed(self, flow: Flow, message: Optional[str] = None) -> OperationResult:
        self._errors.pop(flow, None)
        return OperationResult.applied(flow, message)

    def _is_current_image(self, generation: int) -> bool:
        return generation == self._image_generation

    # ------------------------------------------------------------------
    # Image lifecycle
    # ------------------------------------------------------------------
    async def select_image(self, image: Union[ImageState, bytes], filename: Optional[str] = None) -> OperationResult:
        """
        Make ``image`` the new source image.

        Discards the previous history, suggestions, dismissals and prompt,
        then runs image analysis and the bulk suggestion refresh concurrently.
        Either may fail without affecting the other.

        Returns:
            Applied result once the image is loaded; per-flow failures are
            reported in ``errors``.
        """
        if not isinstance(image, ImageState):
            try:
                image = load_image_state(image, filename=filename)
            except InvalidRequest as e:
                return self._fail(Flow.HISTORY, e)

        self._image_generation += 1
        generation = self._image_generation
        self.history.reset(image)
        self.suggestions.reset()
        self.prompt = ""
        self.analysis = None
        self._analysis_settled = False
        self._matches_hidden = False
        self._errors.clear()
        logger.info(f"[{self.session_id}] New source image selected ({image.mime_type}, {len(image.data)} bytes)")

        analysis, suggestions = await asyncio.gather(
            self._run_analysis(image, generation),
            self._refresh_for_image(image, generation, include_live=False),
        )
        failed = [r.flow.value for r in (analysis, suggestions) if not r.success]
        message = "Image loaded"
        if failed:
            message += f"; failed: {', '.join(failed)}"
        return OperationResult.applied(Flow.HISTORY, message)

    async def _run_analysis(self, image: ImageState, generation: int) -> OperationResult:
        try:
            text = await self.service.analyze_image(image)
        except RemoteError as e:
            if not self._is_current_image(generation):
                return OperationResult.stale(Flow.ANALYSIS)
            return self._fail(Flow.ANALYSIS, e)
        if not self._is_current_image(generation):
            return OperationResult.stale(Flow.ANALYSIS)
        self.analysis = text
        self._analysis_settled = True
        return self._succeed(Flow.ANALYSIS)

    async def _refresh_for_image(self, image: ImageState, generation: int, include_live: bool) -> OperationResult:
        async def fetch(exclude: List[str]) -> List[str]:
            analysis, suggestions = await self.service.analyze_and_suggest(image, exclude)
            # The dedicated analysis call takes precedence when it succeeds.
            if self._is_current_image(generation) and not self._analysis_settled:
                self.analysis = analysis
            return suggestions

        return await self._bulk_refresh(fetch, include_live)

    async def _bulk_refresh(self, fetch, include_live: bool) -> OperationResult:
        try:
            outcome = await self.suggestions.bulk_refresh(fetch, include_live=include_live)
        except RemoteError as e:
            return self._fail(Flow.SUGGESTIONS, e)
        if outcome == Outcome.STALE:
            return OperationResult.stale(Flow.SUGGESTIONS)
        return self._succeed(Flow.SUGGESTIONS, f"{len(self.suggestions.live)} suggestions")

    async def refresh_suggestions(self) -> OperationResult:
        """Explicit "new suggestions": refetch for the current image, or for the prompt."""
        image = self.history.current()
        if image is not None:
            return await self._refresh_for_image(image, self._image_generation, include_live=True)
        prompt = self.prompt.strip()
        if not prompt:
            return self._fail(Flow.SUGGESTIONS, InvalidRequest("Load an image or type a prompt first."))

        async def fetch(exclude: List[str]) -> List[str]:
            return await self.service.suggest_many(prompt)

        return await self._bulk_refresh(fetch, include_live=True)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------
    async def apply_edit(self, prompt_text: Optional[str] = None) -> OperationResult:
        """
        Edit the current image with ``prompt_text`` (defaults to the session prompt).

        Only one edit may be in flight; a second call while the first is
        outstanding is rejected with ``InvalidRequest``.
        """
        text = self.prompt if prompt_text is None else prompt_text
        base = self.history.current()
        if base is None:
            return self._fail(Flow.EDIT, InvalidRequest("Please upload an image before editing."))
        if not text or not text.strip():
            return self._fail(Flow.EDIT, InvalidRequest("Please enter an editing instruction."))
        if self._edit_in_flight:
            return self._fail(Flow.EDIT, InvalidRequest("An edit is already in progress."))

        generation = self._image_generation
        self._edit_in_flight = True
        try:
            result = await self.service.edit_image(base, text)
        except RemoteError as e:
            if not self._is_current_image(generation):
                return OperationResult.stale(Flow.EDIT)
            return self._fail(Flow.EDIT, e)
        finally:
            self._edit_in_flight = False

        if not self._is_current_image(generation):
            logger.debug(f"[{self.session_id}] Dropping edit result for a replaced image")
            return OperationResult.stale(Flow.EDIT)
        self.history.append(result)
        logger.info(f"[{self.session_id}] Edit applied, history position {self.history.cursor}")
        return self._succeed(Flow.EDIT)

    def undo(self) -> OperationResult:
        self.history.undo()
        return OperationResult.applied(Flow.HISTORY)

    def redo(self) -> OperationResult:
        self.history.redo()
        return OperationResult.applied(Flow.HISTORY)

    # ------------------------------------------------------------------
    # Prompt and suggestions
    # ------------------------------------------------------------------
    def type_prompt(self, text: str) -> List[str]:
        """
        Record a keystroke: update the prompt and return the local matches.

        When live typing is enabled this also restarts the debounced remote
        fetch, so it must be called from within the running event loop. The
        fetch replaces the corpus in every state, including the image
        suggestions of a loaded image; sessions that should only filter the
        image corpus locally are created with ``live_typing=False``.
        """
        self.prompt = text or ""
        self._matches_hidden = False
        if self.live_typing:
            self._errors.pop(Flow.TYPING, None)
            self.suggestions.schedule_typing(
                self.prompt,
                self.service.suggest_many,
                on_error=lambda e: self._record_error(Flow.TYPING, e),
            )
        return self.visible_suggestions

    def accept_suggestion(self, suggestion: str) -> OperationResult:
        """Append ``suggestion`` to the prompt, comma separated."""
        if not suggestion or not suggestion.strip():
            return self._fail(Flow.PROMPT, InvalidRequest("Suggestion is empty."))
        existing = self.prompt.strip()
        self.prompt = f"{existing}, {suggestion}" if existing else suggestion
        self._matches_hidden = True
        return self._succeed(Flow.PROMPT, self.prompt)

    def apply_preset(self, name: str) -> OperationResult:
        preset = get_preset(name)
        if preset is None:
            return self._fail(Flow.PROMPT, InvalidRequest(f"Unknown preset: {name}"))
        self.prompt = preset["prompt"]
        self._matches_hidden = True
        return self._succeed(Flow.PROMPT, self.prompt)

    async def dismiss_suggestion(self, suggestion: str) -> OperationResult:
        """Reject ``suggestion`` and try to refill its slot with one new suggestion."""
        if not suggestion or not suggestion.strip():
            return self._fail(Flow.TOP_UP, InvalidRequest("Suggestion is empty."))
        if not self.suggestions.dismiss(suggestion):
            return OperationResult.skipped(Flow.TOP_UP, "Suggestion is not live")

        context = self.prompt.strip() or (self.analysis or "").strip()
        if not context:
            return OperationResult.skipped(Flow.TOP_UP, "No prompt or analysis to base a replacement on")

        async def fetch(exclude: List[str]) -> str:
            return await self.service.suggest_one(context, exclude)

        try:
            outcome = await self.suggestions.top_up(fetch)
        except RemoteError as e:
            return self._fail(Flow.TOP_UP, e)
        if outcome == Outcome.STALE:
            return OperationResult.stale(Flow.TOP_UP)
        if outcome == Outcome.SKIPPED:
            self._errors.pop(Flow.TOP_UP, None)
            return OperationResult.skipped(Flow.TOP_UP, "Replacement collided with an existing suggestion")
        return self._succeed(Flow.TOP_UP)

    async def random_prompt(self) -> OperationResult:
        """Replace the prompt with a fresh creative idea from the model."""
        self.suggestions.debouncer.cancel()
        try:
            text = await self.service.random_prompt()
        except RemoteError as e:
            return self._fail(Flow.RANDOM_PROMPT, e)
        self.prompt = text
        self.suggestions.clear_live()
        self._matches_hidden = True
        if self.live_typing:
            self.suggestions.schedule_typing(
                text,
                self.service.suggest_many,
                on_error=lambda e: self._record_error(Flow.TYPING, e),
            )
        return self._succeed(Flow.RANDOM_PROMPT, text)

    # ------------------------------------------------------------------
    # Text-to-image
    # ------------------------------------------------------------------
    async def generate_image(self, prompt: Optional[str] = None, aspect_ratio: str = "1:1", load: bool = False) -> OperationResult:
        """
        Generate a new image from text.

        Args:
            prompt: Text prompt; defaults to the session prompt
            aspect_ratio: One of 1:1, 16:9, 9:16, 4:3, 3:4
            load: Also make the generated image the new source image

        Returns:
            OperationResult; the image itself is kept in ``last_generated``
        """
        text = self.prompt if prompt is None else prompt
        if not text or not text.strip():
            return self._fail(Flow.GENERATE, InvalidRequest("Please enter a prompt."))
        if aspect_ratio not in ASPECT_RATIOS:
            return self._fail(Flow.GENERATE, InvalidRequest(f"Unsupported aspect ratio: {aspect_ratio}"))
        try:
            image = await self.service.generate_from_text(text, aspect_ratio)
        except RemoteError as e:
            return self._fail(Flow.GENERATE, e)
        self.last_generated = image
        result = self._succeed(Flow.GENERATE, "Image generated")
        if load:
            await self.select_image(image)
        return result

    def close(self):
        """Tear down: cancel pending timers and invalidate in-flight requests."""
        self._image_generation += 1
        self.suggestions.reset()
        logger.info(f"[{self.session_id}] Session closed")
