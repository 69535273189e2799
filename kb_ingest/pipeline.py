"""Ingest source documents into the chunk store: extract, validate, relate, rebuild."""

from __future__ import annotations

import json
import logging
import os
import random
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from tqdm import tqdm

from .breaker import CircuitBreaker, get_default_breaker
from .config import Settings, get_settings
from .errors import IngestError, StoreError
from .extractor import ExtractionCoordinator
from .index import GuideIndex
from .llm import Generator
from .manifest import ManifestDecision, SourceManifest
from .relations import link_related
from .retry import RetryOrchestrator, RetryPolicy
from .schemas import BreakerState, ExtractionProfile, IngestReport, IngestResult, StepResult
from .store import FileChunkStore
from .text_extract import SOURCE_EXTENSIONS, extract_text
from .utils import sha256_file
from .validation import validate_chunks

logger = logging.getLogger(__name__)


def scan_sources(sources: Iterable[Union[str, Path]]) -> Tuple[List[str], List[Dict[str, str]]]:
    """
    Resolve files and directories into ingestible source files.

    Returns:
        (included_files, skipped_files_with_reasons), included sorted
    """
    included: List[str] = []
    skipped: List[Dict[str, str]] = []

    candidates: List[str] = []
    for source in sources:
        source = str(source)
        if os.path.isdir(source):
            for root, dirs, files in os.walk(source):
                dirs.sort()
                candidates.extend(os.path.join(root, name) for name in sorted(files))
        elif os.path.exists(source):
            candidates.append(source)
        else:
            skipped.append({"path": source, "reason": "not_found"})

    for path in candidates:
        ext = os.path.splitext(path)[1].lower()
        if ext not in SOURCE_EXTENSIONS:
            skipped.append({"path": path, "reason": "unsupported_extension"})
            continue
        try:
            if os.path.getsize(path) == 0:
                skipped.append({"path": path, "reason": "empty_file"})
                continue
        except OSError:
            skipped.append({"path": path, "reason": "stat_failed"})
            continue
        included.append(path)

    return sorted(set(included)), skipped


class Ingestor:
    """
    Sequential ingestion of source documents.

    Every collaborator can be injected so tests run against fresh, isolated
    instances; anything omitted is built from ``settings``.

    Args:
        settings: Paths and tuning knobs (``get_settings()`` by default)
        generator: Generation service used for extraction, quality review and relations
        store: Chunk store
        index: Guide index
        manifest: Source manifest (loaded from ``settings.manifest_path`` by default)
        breaker: Circuit breaker for the generation service (process-wide by default)
        text_extractor: Callable turning a source path into plain text
        sleep: Sleep function used between retries
        rng: Random source for retry jitter
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        generator: Optional[Generator] = None,
        store: Optional[FileChunkStore] = None,
        index: Optional[GuideIndex] = None,
        manifest: Optional[SourceManifest] = None,
        breaker: Optional[CircuitBreaker] = None,
        text_extractor: Callable[[str], str] = extract_text,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.settings = settings or get_settings()
        self.generator = generator
        self.store = store or FileChunkStore(self.settings.chunks_dir)
        self.index = index or GuideIndex(self.settings.guide_path)
        self.manifest = manifest or SourceManifest.load(self.settings.manifest_path)
        self.breaker = breaker or get_default_breaker()
        self.text_extractor = text_extractor
        self.sleep = sleep
        self.retry = RetryOrchestrator(
            self.breaker,
            RetryPolicy.from_settings(self.settings),
            sleep=sleep,
            rng=rng,
        )
        self.extractor = ExtractionCoordinator.from_settings(generator, self.retry, self.settings)

    def breaker_state(self) -> BreakerState:
        return self.breaker.state

    def ingest(
        self,
        source_path: Union[str, Path],
        profile: Union[ExtractionProfile, str] = ExtractionProfile.PROCEDURE,
    ) -> IngestResult:
        """
        Ingest one source.

        An unchanged source is skipped and its previous chunk ids returned. A
        changed source has its previous chunks purged before re-extraction.

        Args:
            source_path: Path to the source document
            profile: Extraction profile ("procedure" or "qna")

        Returns:
            IngestResult with the produced chunk ids and whether the source was skipped

        Raises:
            IngestError: If the source cannot be read
            StoreError: If chunks or the manifest cannot be written
        """
        path = str(source_path)
        profile = ExtractionProfile(profile)
        if self.generator is None:
            raise IngestError("A generator is required to ingest sources")

        try:
            content_hash = sha256_file(path)
            size_bytes = os.path.getsize(path)
        except OSError as exc:
            raise IngestError(f"Cannot read source {path}: {exc}") from exc

        decision = self.manifest.decide(path, content_hash)
        if decision == ManifestDecision.SKIP:
            chunk_ids = self.manifest.chunk_ids_for(path)
            logger.info("Unchanged since last extraction, skipping %s (%d chunk(s))", path, len(chunk_ids))
            return IngestResult(source=path, produced_chunk_ids=chunk_ids, skipped=True)
        if decision == ManifestDecision.PURGE_AND_EXTRACT:
            self.purge_source(path)

        text = self.text_extractor(path)
        chunks = self.extractor.extract(text, path, profile)

        chunk_ids: List[str] = []
        for chunk in chunks:
            self.store.put(chunk)
            chunk_ids.append(chunk.chunk_id)

        self.manifest.record_extraction(path, content_hash, size_bytes, chunk_ids)
        self.manifest.save()
        logger.info("Extracted %d chunk(s) from %s", len(chunk_ids), path)
        return IngestResult(source=path, produced_chunk_ids=chunk_ids, skipped=False)

    def purge_source(self, source_path: str) -> List[str]:
        """Delete every chunk the previous extraction of a source produced."""
        stale = self.manifest.chunk_ids_for(source_path)
        if not stale:
            return []
        for chunk_id in stale:
            self.store.delete(chunk_id)
        self.index.remove(stale)
        logger.info("Purged %d stale chunk(s) from %s", len(stale), source_path)
        return stale

    def delete_chunk(self, chunk_id: str) -> bool:
        """
        Delete one chunk from the store, the manifest and the guide.

        Returns:
            False when the chunk was neither stored nor tracked
        """
        existed = self.store.delete(chunk_id)
        source = self.manifest.remove_chunk(chunk_id)
        if source is not None:
            self.manifest.save()
        if not existed and source is None:
            logger.warning("Chunk %s not found", chunk_id)
            return False
        self.index.rebuild(self.store)
        logger.info("Deleted chunk %s (source: %s)", chunk_id, source or "untracked")
        return True

    def run(
        self,
        sources: Union[str, Path, Iterable[Union[str, Path]]],
        profile: Union[ExtractionProfile, str] = ExtractionProfile.PROCEDURE,
    ) -> IngestReport:
        """
        Ingest a batch of sources and run the post-extraction stages.

        Stages run in order: extract (aborts only on StoreError), validate and
        relate (failures are logged, the run continues; both are skipped when
        nothing new was extracted), rebuild. A structured report is written to
        ``reports_dir``.

        Args:
            sources: Files and/or directories
            profile: Extraction profile for every source in the batch

        Returns:
            IngestReport for the run
        """
        if isinstance(sources, (str, Path)):
            sources = [sources]
        started = datetime.now(timezone.utc)
        start_time = time.perf_counter()

        included, skipped = scan_sources(sources)
        print(
            "Scan summary: "
            f"total={len(included) + len(skipped)}, included={len(included)}, skipped={len(skipped)}"
        )
        for item in skipped:
            logger.info("Skipping %s (%s)", item["path"], item["reason"])

        report = IngestReport(started_at=started.isoformat(timespec="seconds"), sources=included)

        extract_step, new_ids = self._extract_all(included, profile, report)
        report.steps.append(extract_step)

        if extract_step.success:
            if new_ids:
                step, _ = self._run_step("validate", self._validate, fatal=False)
                report.steps.append(step)
                step, _ = self._run_step("relate", self._relate, fatal=False)
                report.steps.append(step)
            else:
                logger.info("No new chunks extracted; skipping validate and relate")

            step, entries = self._run_step("rebuild", lambda: self.index.rebuild(self.store), fatal=True)
            report.steps.append(step)
            report.active_chunks = len(entries or [])

        report.total_duration_ms = int((time.perf_counter() - start_time) * 1000)
        report.success = all(step.success for step in report.steps)
        self._write_report(report, started)
        print_report(report)
        return report

    def _extract_all(
        self,
        paths: List[str],
        profile: Union[ExtractionProfile, str],
        report: IngestReport,
    ) -> Tuple[StepResult, List[str]]:
        start = time.perf_counter()
        new_ids: List[str] = []
        error: Optional[str] = None

        progress = tqdm(paths, desc="Ingesting sources")
        for path in progress:
            progress.set_postfix_str(os.path.basename(path))
            try:
                result = self.ingest(path, profile)
            except StoreError as exc:
                error = str(exc)
                tqdm.write(f"[ERROR] store failure, aborting: {exc}")
                logger.error("Store failure while ingesting %s: %s", path, exc)
                break
            except Exception as exc:
                report.failed_sources.append(path)
                tqdm.write(f"[WARN] ingest failed: {os.path.basename(path)} ({exc})")
                logger.exception("Ingesting %s failed", path)
                continue

            report.results.append(result)
            if result.skipped:
                tqdm.write(f"[SKIP] unchanged: {os.path.basename(path)}")
            else:
                new_ids.extend(result.produced_chunk_ids)
                if not result.produced_chunk_ids:
                    tqdm.write(f"[WARN] no chunks produced: {os.path.basename(path)}")

        step = StepResult(
            step="extract",
            success=error is None,
            duration_ms=int((time.perf_counter() - start) * 1000),
            error=error,
        )
        return step, new_ids

    def _validate(self) -> List[str]:
        return validate_chunks(
            self.store,
            generator=self.generator,
            breaker=self.breaker,
            quality_gate=self.settings.quality_gate,
            max_output_tokens=self.settings.max_output_tokens,
            delay_s=self.settings.single_retry_delay_s,
            sleep=self.sleep,
        )

    def _relate(self) -> List[str]:
        return link_related(
            self.store,
            self.generator,
            self.breaker,
            max_related=self.settings.max_related,
            max_output_tokens=self.settings.max_output_tokens,
            delay_s=self.settings.single_retry_delay_s,
            sleep=self.sleep,
        )

    def _run_step(self, name: str, fn: Callable[[], Any], fatal: bool) -> Tuple[StepResult, Any]:
        start = time.perf_counter()
        try:
            value = fn()
        except Exception as exc:
            if fatal:
                logger.error("Step %s failed: %s", name, exc)
            else:
                logger.warning("Step %s failed, continuing: %s", name, exc)
            duration_ms = int((time.perf_counter() - start) * 1000)
            return StepResult(step=name, success=False, duration_ms=duration_ms, error=str(exc)), None
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info("Step %s complete (%dms)", name, duration_ms)
        return StepResult(step=name, success=True, duration_ms=duration_ms), value

    def _write_report(self, report: IngestReport, started: datetime) -> Optional[Path]:
        reports_dir = Path(self.settings.reports_dir)
        report_path = reports_dir / f"ingest-{started.strftime('%Y%m%d-%H%M%S')}.json"
        try:
            reports_dir.mkdir(parents=True, exist_ok=True)
            with open(report_path, "w", encoding="utf-8") as f:
                json.dump(report.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
        except OSError as exc:
            logger.error("Failed to save ingest report %s: %s", report_path, exc)
            return None
        logger.info("Saved ingest report: %s", report_path)
        return report_path


def print_report(report: IngestReport) -> None:
    """Print the end-of-run summary block."""
    produced = sum(len(result.produced_chunk_ids) for result in report.results if not result.skipped)
    unchanged = sum(1 for result in report.results if result.skipped)

    print("=" * 60)
    print("Ingestion completed successfully!" if report.success else "Ingestion finished with errors")
    print("=" * 60)
    print(f"Started at:     {report.started_at}")
    print(f"Total time:     {report.total_duration_ms / 1000:.1f}s")
    print(f"Sources:        {len(report.sources)}")
    print(f"Unchanged:      {unchanged}")
    print(f"New chunks:     {produced}")
    print(f"Active chunks:  {report.active_chunks}")
    print(f"Failed sources: {len(report.failed_sources)}")
    for path in report.failed_sources[:10]:
        print(f"  - {path}")
    if len(report.failed_sources) > 10:
        print(f"  ... and {len(report.failed_sources) - 10} more")
    print("Steps:")
    width = max((len(step.step) for step in report.steps), default=0)
    for step in report.steps:
        status = "ok" if step.success else "FAILED"
        print(f"  {step.step.ljust(width)}  {status:<6}  {step.duration_ms / 1000:.1f}s")
        if not step.success and step.error:
            print(f"    {step.error.strip().splitlines()[0]}")
    print("=" * 60)
