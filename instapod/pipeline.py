"""
Article processing pipeline.

One run: list bookmarks -> drop those already in state.json -> process the
rest with bounded concurrency (fetch -> extract -> translate -> synthesize ->
write audio -> commit). An item that fails anywhere is logged and skipped; it
is still absent from state, so the next run retries it.
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Union

from instapod.audio.synthesis import SynthesisGateway, audio_filename
from instapod.config import DEFAULT_INTRO_TEMPLATE, AppConfig
from instapod.models import Episode, RunReport, SourceItem
from instapod.parser import build_announcement, extract_article
from instapod.sources.instapaper import InstapaperClient
from instapod.state import StateStore
from instapod.translation import TranslationGateway
from instapod.utils import atomic_write_bytes

logger = logging.getLogger(__name__)

MAX_CONCURRENCY = 2


class RunPhase(str, Enum):
    IDLE = "idle"
    LISTING = "listing"
    DISPATCHING = "dispatching"
    DRAINING = "draining"


class Orchestrator:
    """Drives source items through the pipeline and into the state store.

    Collaborators are duck-typed:
        source.list_items(tag=None) / source.fetch_content(item_id)   (async)
        translator.translate(text, is_title=...)                      (async, optional)
        synthesizer.synthesize(text)  -> SynthesisResult              (async)
    """

    def __init__(self, source, state: StateStore, synthesizer, *,
                 audio_dir: Union[str, Path],
                 translator=None,
                 tags: Iterable[str] = (),
                 concurrency: int = MAX_CONCURRENCY,
                 intro_template: str = DEFAULT_INTRO_TEMPLATE):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.source = source
        self.state = state
        self.synthesizer = synthesizer
        self.translator = translator
        self.audio_dir = Path(audio_dir)
        self.tags = [t for t in tags if t]
        self.concurrency = concurrency
        self.intro_template = intro_template
        self.phase = RunPhase.IDLE

    async def run(self) -> RunReport:
        """One full discovery-through-commit pass. SourceUnavailable propagates."""
        report = RunReport()
        try:
            self.phase = RunPhase.LISTING
            logger.info("[pipeline] Fetching bookmarks...")
            items = await self._discover()
            report.discovered = len(items)

            self.phase = RunPhase.DISPATCHING
            pending = [item for item in items if not self.state.is_processed(item.id)]
            report.pending = len(pending)
            if not pending:
                logger.info("[pipeline] No new bookmarks to process")
                self.state.touch_last_run()
                return report

            logger.info(f"[pipeline] Found {len(pending)} new bookmark(s) to process")
            self.audio_dir.mkdir(parents=True, exist_ok=True)
            slots = asyncio.Semaphore(self.concurrency)
            tasks = [asyncio.create_task(self._process_guarded(item, slots, report)) for item in pending]

            self.phase = RunPhase.DRAINING
            await asyncio.gather(*tasks)

            self.state.touch_last_run()
            logger.info(
                f"[pipeline] Run complete: {len(report.succeeded)} succeeded, "
                f"{len(report.failed)} failed"
            )
            return report
        finally:
            self.phase = RunPhase.IDLE

    async def _discover(self) -> List[SourceItem]:
        if not self.tags:
            return await self.source.list_items()

        logger.info(f"[pipeline] Filtering for tags: {self.tags}")
        seen = set()
        items = []
        for tag in self.tags:
            tagged = await self.source.list_items(tag=tag)
            logger.info(f"[pipeline] Tag \"{tag}\": {len(tagged)} bookmark(s)")
            for item in tagged:
                if item.id not in seen:
                    seen.add(item.id)
                    items.append(item)
        return items

    async def _process_guarded(self, item: SourceItem, slots: asyncio.Semaphore, report: RunReport) -> None:
        async with slots:
            try:
                episode = await self.process_item(item)
            except Exception as e:
                logger.error(f"[pipeline] ✗ Failed to process bookmark {item.id}: {type(e).__name__}: {e}")
                report.failed[item.id] = f"{type(e).__name__}: {e}"
                return
        report.succeeded.append(item.id)
        logger.info(f"[pipeline] ✓ Completed: \"{episode.title}\" ({episode.duration_seconds}s)")

    async def process_item(self, item: SourceItem) -> Episode:
        """fetch -> extract -> translate -> synthesize -> store audio -> commit."""
        logger.info(f"[pipeline] Processing: \"{item.title}\" ({item.id})")

        html = await self.source.fetch_content(item.id)
        article = extract_article(item, html, self.intro_template)

        title = article.title
        spoken_text = article.full_text
        if self.translator is not None:
            title = await self.translator.translate(article.title, is_title=True)
            body = await self.translator.translate(article.body)
            announcement = build_announcement(title, article.source_name, self.intro_template)
            spoken_text = f"{announcement}\n\n{body}"

        result = await self.synthesizer.synthesize(spoken_text)

        filename = audio_filename(item.id, title)
        audio_path = self.audio_dir / filename
        atomic_write_bytes(audio_path, result.audio)

        episode = Episode(
            id=item.id,
            title=title,
            source=article.source_name,
            audio_ref=filename,
            duration_seconds=result.duration_seconds,
            published_at=datetime.now(timezone.utc),
        )
        try:
            self.state.commit(episode)
        except Exception:
            try:
                audio_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"[pipeline] Could not remove orphaned audio {audio_path}: {e}")
            raise
        return episode


def build_orchestrator(config: AppConfig, state: StateStore, source=None) -> Orchestrator:
    """Wire the production collaborators from config."""
    translator = TranslationGateway(config.translation) if config.translation.enabled else None
    return Orchestrator(
        source=source or InstapaperClient(config.instapaper),
        state=state,
        synthesizer=SynthesisGateway(config.tts, timeout=config.pipeline.synthesis_timeout),
        translator=translator,
        audio_dir=config.audio_dir,
        tags=config.filters.tags,
        concurrency=config.pipeline.concurrency,
        intro_template=config.tts.intro_template,
    )
