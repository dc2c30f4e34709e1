"""
AI Highlight Pipeline

Main orchestrator that grounds AI answers in a rendered PDF.

Per answer:
1. Rank (page, sentence) candidates across the document
2. Render the candidate's page and let its text settle
3. Locate the sentence among the page's text fragments
4. Project the located fragments to page-relative rectangles
5. Store, announce and persist the highlight
6. Optionally circle the figure the answer refers to

Never blocks the batch - a failing candidate degrades to a placeholder
highlight, and image circling is best-effort.
"""

import asyncio
import itertools
import logging
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

from .annotation_gateway import AnnotationGateway, annotation_highlight_id, highlight_to_payload, map_record_to_highlight
from .candidate_ranker import CandidateRanker
from .coordinate_projector import CoordinateProjector
from .errors import GroundingError, NoCandidateError, PersistenceError, RenderError, SpanNotFoundError
from .events import DocumentLoaded, EventBus, HighlightAdded, NoMatchFound, RenderFailed
from .highlight_store import HighlightStore
from .image_regions import (
    ImageRegionDetector,
    coverage_ratio,
    extract_figure_number,
    is_caption_line,
    largest_rect,
    mentions_figure,
    nearest_to_caption,
)
from .models import DEFAULT_TEXT_COLOR, Candidate, Highlight, HighlightType, PageText, Rect
from .page_renderer import RenderingEngine
from .page_text import PageTextExtractor
from .span_locator import SpanLocator
from .text_utils import normalize

logger = logging.getLogger(__name__)


@dataclass
class GroundingConfig:
    """Tunable knobs of the highlight pipeline."""

    top_k: int = 3
    min_score: float = 0.15
    fuzzy_floor: float = 0.4
    primary_settle_delay: float = 0.6
    secondary_settle_delay: float = 0.2
    text_layer_retries: int = 20
    text_layer_delay: float = 0.5
    image_coverage_threshold: float = 0.12
    fallback_rect: Rect = field(default_factory=lambda: Rect(50, 150, 400, 25))

    @classmethod
    def from_settings(cls, settings) -> "GroundingConfig":
        return cls(
            top_k=settings.ai_top_k,
            min_score=settings.ai_min_score,
            fuzzy_floor=settings.fuzzy_match_floor,
            primary_settle_delay=settings.primary_settle_delay,
            secondary_settle_delay=settings.secondary_settle_delay,
            text_layer_retries=settings.text_layer_retries,
            text_layer_delay=settings.text_layer_delay,
            image_coverage_threshold=settings.image_coverage_threshold,
        )

    @classmethod
    def from_yaml(cls, config_path: Path | str) -> "GroundingConfig":
        """
        Load the `grounding:` section of a YAML config file.

        Missing files give the defaults; unknown keys are ignored. Values
        are converted to the type of their field, so quoted numbers work.

        Raises:
            ValueError: if a value cannot be converted
        """
        import yaml

        config_path = Path(config_path)

        if not config_path.exists():
            logger.warning(f"Config file not found: {config_path}, using defaults")
            return cls()

        with open(config_path, 'r') as f:
            full_config = yaml.safe_load(f) or {}

        section = full_config.get("grounding", {}) or {}
        field_types = {f.name: f.type for f in fields(cls)}

        values = {}
        for key, value in section.items():
            if key not in field_types:
                continue
            try:
                if field_types[key] is Rect:
                    values[key] = Rect(**{k: float(v) for k, v in value.items()})
                else:
                    values[key] = field_types[key](value)
            except (TypeError, ValueError, AttributeError) as e:
                raise ValueError(f"Invalid value for {key} in {config_path}: {value!r}") from e

        return cls(**values)

    def validate(self) -> list[str]:
        """Return a list of configuration problems (empty when valid)."""
        problems = []
        if self.top_k < 1:
            problems.append("top_k must be at least 1")
        if not 0 <= self.min_score < 1:
            problems.append("min_score must be in [0, 1)")
        if not 0 <= self.fuzzy_floor < 1:
            problems.append("fuzzy_floor must be in [0, 1)")
        if self.primary_settle_delay < 0 or self.secondary_settle_delay < 0:
            problems.append("settle delays must not be negative")
        if self.text_layer_retries < 1 or self.text_layer_delay <= 0:
            problems.append("text layer wait must allow at least one positive interval")
        if not 0 < self.image_coverage_threshold <= 1:
            problems.append("image_coverage_threshold must be in (0, 1]")
        if not self.fallback_rect.is_renderable:
            problems.append("fallback_rect must be larger than 1x1")
        return problems


class AIHighlightPipeline:
    """
    Grounds AI answers for one document viewing session.

    Owns the batch signature guard, the current page and the set of pages
    whose figure was circled in the running batch. All work runs on the
    event loop; candidates are processed one at a time.
    """

    def __init__(
        self,
        engine: RenderingEngine,
        gateway: AnnotationGateway,
        store: HighlightStore,
        events: EventBus,
        config: Optional[GroundingConfig] = None,
        document_id: str = "",
        detector: Optional[ImageRegionDetector] = None,
        extractor: Optional[PageTextExtractor] = None
    ):
        """
        Initialize the pipeline.

        Args:
            engine: Rendering engine of the open document
            gateway: Annotation persistence for the current user
            store: Highlights of this session
            events: Bus receiving pipeline outcome events
            config: Pipeline knobs (defaults when omitted)
            document_id: Identifier used when persisting highlights
            detector: Image regions captured by the engine while rendering
            extractor: Text cache over the engine
        """
        self.engine = engine
        self.gateway = gateway
        self.store = store
        self.events = events
        self.config = config or GroundingConfig()
        self.document_id = document_id
        self.detector = detector or ImageRegionDetector()
        self.extractor = extractor or PageTextExtractor(engine)

        self.ranker = CandidateRanker(top_k=self.config.top_k, min_score=self.config.min_score)
        self.locator = SpanLocator(fuzzy_floor=self.config.fuzzy_floor)
        self.projector = CoordinateProjector()

        self.corpus: list[PageText] = []
        self.current_page = 1
        self.failed = False

        self._last_signature: Optional[str] = None
        self._active_task: Optional[asyncio.Task] = None
        self._circled_pages: set[int] = set()
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Document lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> list[PageText]:
        """
        Build the ranking corpus for the document.

        Raises:
            RenderError: if the engine cannot read the document; the session
                is marked failed and no highlighting happens afterwards
        """
        try:
            self.corpus = await self.extractor.build_corpus()
        except Exception as e:
            self.failed = True
            logger.error(f"Failed to load document {self.document_id}: {e}", exc_info=True)
            self.events.emit(RenderFailed(message=str(e)))
            if isinstance(e, RenderError):
                raise
            raise RenderError(str(e)) from e

        self.events.emit(DocumentLoaded(num_pages=self.engine.num_pages))
        return self.corpus

    async def restore(self) -> list[Highlight]:
        """
        Add persisted highlights to the store.

        Idempotent: records whose ann- id is already stored are skipped.
        """
        if self.failed:
            return []

        try:
            records = await self.gateway.list(self.document_id)
        except PersistenceError as e:
            logger.warning(f"Could not restore highlights for {self.document_id}: {e}")
            return []

        known = self.store.ids()
        restored = []
        for record in records:
            highlight = map_record_to_highlight(record)
            if highlight.id in known:
                continue
            known.add(highlight.id)
            restored.append(highlight)

        self.store.extend(restored)
        logger.info(f"Restored {len(restored)} of {len(records)} persisted highlights")
        return restored

    def clear(self) -> None:
        """Forget all highlights and batch state of this session."""
        if self._active_task and not self._active_task.done():
            self._active_task.cancel()
        self._active_task = None

        self.store.clear()
        self._last_signature = None
        self._circled_pages = set()

    # ------------------------------------------------------------------
    # AI answers
    # ------------------------------------------------------------------

    async def process_batch(
        self,
        answers: list[str],
        message_id: Optional[str] = None,
        no_match: Optional[list[str]] = None
    ) -> list[Highlight]:
        """
        Ground a batch of AI answers.

        A batch identical to the last processed one is ignored. A different
        batch cancels one still in flight; the cancelled call returns the
        highlights it had already produced.

        Args:
            answers: AI answer strings, processed in order
            message_id: Chat message the highlights are linked to
            no_match: Receives the no-match message of each answer of this
                batch that had no candidate

        Returns:
            Highlights created by this batch, in creation order
        """
        if self.failed:
            logger.warning(f"Document {self.document_id} failed to load; ignoring batch")
            return []

        answers = [a for a in answers if a and a.strip()]
        if not answers:
            return []

        signature = "||".join(answers)
        if signature == self._last_signature:
            logger.debug("Batch already processed, skipping")
            return []
        self._last_signature = signature

        if self._active_task and not self._active_task.done():
            logger.info("Newer batch arrived, cancelling the running one")
            self._active_task.cancel()

        created: list[Highlight] = []
        task = asyncio.ensure_future(self._run_batch(answers, message_id, created, no_match))
        self._active_task = task

        try:
            await task
        except asyncio.CancelledError:
            if task is self._active_task:
                raise
            logger.info(f"Batch superseded after {len(created)} highlights")

        return created

    async def _run_batch(
        self,
        answers: list[str],
        message_id: Optional[str],
        created: list[Highlight],
        no_match: Optional[list[str]] = None
    ) -> None:
        self._circled_pages = set()

        for answer in answers:
            await self._process_answer(answer, message_id, created, no_match)

        logger.info(f"Batch complete: {len(created)} highlights for {len(answers)} answers")

    async def _process_answer(
        self,
        answer: str,
        message_id: Optional[str],
        created: list[Highlight],
        no_match: Optional[list[str]] = None
    ) -> None:
        try:
            candidates = self.ranker.top_candidates(answer, self.corpus)
        except NoCandidateError:
            event = NoMatchFound()
            if no_match is not None:
                no_match.append(event.message)
            self.events.emit(event)
            return

        for index, candidate in enumerate(candidates):
            primary = index == 0
            if primary:
                self.current_page = candidate.page

            try:
                highlight = await self._highlight_candidate(candidate, primary)
            except Exception as e:
                logger.warning(f"Falling back to placeholder on page {candidate.page}: {e}")
                highlight = self._fallback_highlight(candidate.page, candidate.sentence, HighlightType.AI)

            await self._publish(highlight, message_id, created)

            if primary:
                await self._circle_image(answer, candidate.page, message_id, created)

        await self._target_figure(answer, message_id, created)

    async def _highlight_candidate(self, candidate: Candidate, primary: bool) -> Highlight:
        page = candidate.page
        await self.engine.render_page(page)

        delay = self.config.primary_settle_delay if primary else self.config.secondary_settle_delay
        if delay > 0:
            await asyncio.sleep(delay)

        rects = await self._locate_rects(page, candidate.sentence)
        logger.debug(f"Located candidate on page {page} ({len(rects)} rects, score {candidate.score:.3f})")

        return Highlight(
            id=self._next_id("ai", page),
            page_number=page,
            text=candidate.sentence,
            rects=rects,
            color=DEFAULT_TEXT_COLOR,
            type=HighlightType.AI,
        )

    async def _locate_rects(self, page: int, text: str) -> list[Rect]:
        """Rectangles of a text on a rendered page."""
        await self.engine.wait_for_text_layer(
            page,
            retries=self.config.text_layer_retries,
            delay=self.config.text_layer_delay,
        )

        fragments = await self.extractor.fragments(page)
        match = self.locator.locate(fragments, text)
        rects = self.projector.project_fragments(match.fragments, self.engine.get_viewport(page))

        if not rects:
            raise SpanNotFoundError(f"Match on page {page} has no renderable geometry")
        return rects

    def _fallback_highlight(self, page: int, text: str, highlight_type: HighlightType) -> Highlight:
        fallback = self.config.fallback_rect
        return Highlight(
            id=self._next_id(highlight_type.value, page),
            page_number=page,
            text=text,
            rects=[Rect(fallback.x, fallback.y, fallback.width, fallback.height)],
            color=DEFAULT_TEXT_COLOR,
            type=highlight_type,
        )

    # ------------------------------------------------------------------
    # Figures
    # ------------------------------------------------------------------

    async def _circle_image(self, answer: str, page: int, message_id: Optional[str], created: list[Highlight]) -> None:
        """Circle the figure on the best candidate's page, when warranted."""
        if page in self._circled_pages:
            return

        try:
            rects = self.detector.get_rects(page)
            largest = largest_rect(rects)
            if largest is None:
                return

            viewport = self.engine.get_viewport(page)
            coverage = coverage_ratio(largest, viewport.page_width, viewport.page_height)
            if not mentions_figure(answer) and coverage < self.config.image_coverage_threshold:
                return

            target = await self._rect_near_caption(answer, page, rects) or largest
            self._circled_pages.add(page)
            circle = Highlight.image_circle(self._next_id("image", page), page, target)
            await self._publish(circle, message_id, created)
        except Exception as e:
            logger.debug(f"Image circling skipped on page {page}: {e}")

    async def _rect_near_caption(self, answer: str, page: int, rects: list[Rect]) -> Optional[Rect]:
        number = extract_figure_number(answer)
        fragments = await self.extractor.fragments(page)

        # A numbered answer only follows the caption carrying that number
        captions = [f for f in fragments if is_caption_line(f.content, number)]
        if not captions:
            return None

        caption = captions[0]
        caption_rect = self.projector.to_screen(
            caption.origin_x,
            caption.origin_y,
            caption.width,
            caption.font_size,
            self.engine.get_viewport(page),
        )
        return nearest_to_caption(rects, caption_rect.center_y)

    async def _target_figure(self, answer: str, message_id: Optional[str], created: list[Highlight]) -> None:
        """Circle the largest image of the first page mentioning "Figure N"."""
        number = extract_figure_number(answer)
        if number is None:
            return

        pattern = re.compile(rf"\bfigure {number}\b")
        page = next((p.page for p in self.corpus if pattern.search(normalize(p.text))), None)
        if page is None or page in self._circled_pages:
            return

        try:
            await self.engine.render_page(page)
            target = largest_rect(self.detector.get_rects(page))
            if target is None:
                return

            self._circled_pages.add(page)
            circle = Highlight.image_circle(self._next_id("image", page), page, target)
            await self._publish(circle, message_id, created)
        except Exception as e:
            logger.debug(f"Figure {number} targeting skipped on page {page}: {e}")

    # ------------------------------------------------------------------
    # User highlights
    # ------------------------------------------------------------------

    async def highlight_text(
        self,
        page_number: int,
        text: str,
        highlight_type: HighlightType = HighlightType.MANUAL,
        message_id: Optional[str] = None
    ) -> Highlight:
        """
        Highlight a given text on a page, with the placeholder as fallback.

        Raises:
            RenderError: if the document failed to load
            ValueError: for an empty text or a page outside the document
        """
        if self.failed:
            raise RenderError(f"Document {self.document_id} failed to load")
        if not text or not text.strip():
            raise ValueError("Text to highlight is empty")
        if not 1 <= page_number <= self.engine.num_pages:
            raise ValueError(f"Page {page_number} out of range (1-{self.engine.num_pages})")

        self.current_page = page_number

        try:
            await self.engine.render_page(page_number)
            rects = await self._locate_rects(page_number, text)
            highlight = Highlight(
                id=self._next_id(highlight_type.value, page_number),
                page_number=page_number,
                text=text,
                rects=rects,
                color=DEFAULT_TEXT_COLOR,
                type=highlight_type,
            )
        except GroundingError as e:
            logger.warning(f"Falling back to placeholder on page {page_number}: {e}")
            highlight = self._fallback_highlight(page_number, text, highlight_type)

        await self._publish(highlight, message_id)
        return highlight

    # ------------------------------------------------------------------
    # Store, announce, persist
    # ------------------------------------------------------------------

    def _next_id(self, kind: str, page: int) -> str:
        return f"{kind}-highlight-{next(self._ids)}-{page}"

    async def _publish(
        self,
        highlight: Highlight,
        message_id: Optional[str] = None,
        created: Optional[list[Highlight]] = None
    ) -> None:
        self.store.add(highlight)
        if created is not None:
            created.append(highlight)
        self.events.emit(HighlightAdded(highlight=highlight))

        await self._persist(highlight, message_id)

    async def _persist(self, highlight: Highlight, message_id: Optional[str]) -> None:
        payload = highlight_to_payload(highlight, self.document_id, message_id)
        try:
            result = await self.gateway.save(payload)
        except PersistenceError as e:
            logger.warning(f"Highlight {highlight.id} not persisted: {e}")
            return

        persisted_id = annotation_highlight_id(result.annotation.id)
        if persisted_id in self.store.ids():
            # Deduplicated against a highlight already on screen
            logger.debug(f"Highlight {highlight.id} duplicates {persisted_id}")
            return
        highlight.id = persisted_id
