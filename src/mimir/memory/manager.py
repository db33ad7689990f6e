"""Memory manager for orchestrating extraction runs against the store."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import MimirError, UserError
from ..logging import JSONLLogger, get_logger
from .extraction_log import content_hash, log_extraction, was_already_extracted
from .extractor import FactExtractor
from .models import ExtractionLogEntry, ExtractionResult
from .reconcile import apply_extracted_facts, store_session_summary
from .store import MemoryStore

logger = logging.getLogger(__name__)


@dataclass
class FileOutcome:
    """What extracting one file did."""

    file_path: str
    facts: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    summary_key: str | None = None
    skipped_file: bool = False
    status: str = "ok"
    duration_ms: int = 0
    result: ExtractionResult | None = None

    @property
    def summary_stored(self) -> bool:
        return self.summary_key is not None


@dataclass
class BatchOutcome:
    """Aggregate counters for a batch of files."""

    files: int = 0
    skipped_files: int = 0
    facts: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    summaries: int = 0
    outcomes: list[FileOutcome] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def processed(self) -> int:
        return self.files - self.skipped_files

    def add(self, outcome: FileOutcome) -> None:
        self.outcomes.append(outcome)
        self.facts += outcome.facts
        self.inserted += outcome.inserted
        self.updated += outcome.updated
        self.skipped += outcome.skipped
        self.summaries += 1 if outcome.summary_stored else 0
        self.skipped_files += 1 if outcome.skipped_file else 0


def read_source(path: Path) -> str:
    """Read a source file as UTF-8 text.

    Raises:
        UserError: If the file is missing or unreadable.
    """
    if not path.is_file():
        raise UserError(f"File not found: {path}")
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise UserError(f"Cannot read {path}: {e}") from None


class MemoryManager:
    """Orchestrates extraction: skip-check, extract, merge and log.

    This is the main interface for automatic memory, coordinating between
    the store, the extractor and the logs.
    """

    def __init__(
        self,
        store: MemoryStore,
        extractor: FactExtractor,
        event_logger: JSONLLogger | None = None,
    ) -> None:
        """Initialize the manager with a store and an extractor.

        Args:
            store: The MemoryStore for persistence.
            extractor: FactExtractor used for every file.
            event_logger: JSONL logger for extraction events.
        """
        self.store = store
        self.extractor = extractor
        self.events = event_logger or get_logger()

    async def extract_file(
        self,
        path: Path,
        *,
        force: bool = False,
        dry_run: bool = False,
    ) -> FileOutcome:
        """Extract facts from one file and merge them into the store.

        Unchanged files that were extracted successfully before are skipped
        unless ``force`` is set. ``dry_run`` never writes facts or the
        extraction log.

        Raises:
            UserError: If the file cannot be read, or a candidate cannot be
                merged (logged first, nothing from the file is kept).
            GenerationError: If the model call fails (logged first).
        """
        path = Path(path)
        content = read_source(path)
        file_path = str(path.resolve())
        fingerprint = content_hash(content)

        if not dry_run and not force and was_already_extracted(self.store, file_path, content):
            logger.debug("%s: already extracted, skipping", path)
            self.events.log_extraction_skipped(file_path, fingerprint)
            return FileOutcome(file_path=file_path, skipped_file=True, status="unchanged")

        start = time.monotonic()
        try:
            result = await self.extractor.extract(content)
        except MimirError as e:
            duration_ms = _elapsed_ms(start)
            self._record(
                file_path, fingerprint, "error", duration_ms, dry_run=dry_run, error=e.message
            )
            raise

        duration_ms = _elapsed_ms(start)
        outcome = FileOutcome(
            file_path=file_path,
            facts=len(result.facts),
            duration_ms=duration_ms,
            result=result,
        )

        if result.is_empty():
            outcome.status = "empty"
            self._record(file_path, fingerprint, "empty", duration_ms, dry_run=dry_run)
            return outcome

        if dry_run:
            self.events.log_extraction(
                file_path,
                "ok",
                engine=result.engine,
                model=result.model,
                duration_ms=duration_ms,
                dry_run=True,
                facts=outcome.facts,
            )
            return outcome

        try:
            with self.store.transaction():
                counts = apply_extracted_facts(self.store, result.facts)
                outcome.summary_key = store_session_summary(self.store, result.session_summary)
                outcome.inserted = counts.inserted
                outcome.updated = counts.updated
                outcome.skipped = counts.skipped
                self._record(
                    file_path,
                    fingerprint,
                    "ok",
                    duration_ms,
                    facts=outcome.facts,
                    inserted=outcome.inserted,
                    updated=outcome.updated,
                    skipped=outcome.skipped,
                )
        except MimirError as e:
            # The merge was rolled back; record the failure outside it.
            self._record(
                file_path, fingerprint, "error", duration_ms, facts=outcome.facts, error=e.message
            )
            raise

        return outcome

    async def extract_batch(
        self,
        paths: list[Path],
        *,
        force: bool = False,
        dry_run: bool = False,
        on_file: Callable[[Path, FileOutcome | MimirError], None] | None = None,
    ) -> BatchOutcome:
        """Extract files one after another; a failing file does not stop the rest.

        Args:
            paths: Files to process, in order.
            force: Re-extract files whose content was already extracted.
            dry_run: Extract without writing anything.
            on_file: Called after each file with its outcome or its error.
        """
        batch = BatchOutcome(files=len(paths))
        for path in paths:
            try:
                outcome = await self.extract_file(path, force=force, dry_run=dry_run)
            except MimirError as e:
                logger.info("Extraction failed for %s: %s", path, e.message)
                batch.failures[str(path)] = e.message
                if on_file is not None:
                    on_file(path, e)
                continue
            batch.add(outcome)
            if on_file is not None:
                on_file(path, outcome)
        return batch

    def _record(
        self,
        file_path: str,
        fingerprint: str,
        status: str,
        duration_ms: int,
        *,
        dry_run: bool = False,
        error: str | None = None,
        **counts: int,
    ) -> None:
        """Write the extraction log row (unless dry-run) and the JSONL event."""
        engine = self.extractor.engine
        model = self.extractor.model
        if not dry_run:
            log_extraction(
                self.store,
                ExtractionLogEntry(
                    file_path=file_path,
                    content_hash=fingerprint,
                    engine=engine,
                    model=model,
                    status=status,
                    duration_ms=duration_ms,
                    error=error,
                    **counts,
                ),
            )
        self.events.log_extraction(
            file_path,
            status,
            engine=engine,
            model=model,
            duration_ms=duration_ms,
            dry_run=dry_run,
            error=error,
            **counts,
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
