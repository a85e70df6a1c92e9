"""boathouse_sync.pipeline

Lifecycle engine shared by every entity process.

An entity process is four plain stage functions:

    extract()            -> raw grids from the sheet source
    transform(raw)       -> TransformResult (records + row diagnostics)
    validate(records)    -> ValidationResult (errors abort the load)
    load(records)        -> LoadResult (per-record created/updated/failed)

run_process() drives them in order: Retry(extract) -> transform ->
validate -> load.  Stage functions are bound to their collaborators
(connection, source, layout, settings) when the process is built, so each
stage can be unit-tested in isolation with plain arguments.

Error taxonomy:
  ExtractionError   transient transport failure; retried with backoff,
                    fatal to the process once attempts are exhausted.
  row diagnostics   parse/shape issues on one row; collected as warnings,
                    never raised.
  ValidationError   aggregate issue found after transform; aborts load.
  LoadError         single-record failure during upsert; counted per
                    record, never aborts the batch.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Generic, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")

WARNINGS_IN_REPORT = 50


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SyncError(Exception):
    """Base class for sync engine failures."""


class ExtractionError(SyncError):
    """Raised by a sheet source when a read fails.

    retryable=False marks failures that another attempt cannot fix
    (missing worksheet, permission denied, malformed range).
    """

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class ValidationError(SyncError):
    """Raised when a transformed batch fails structural/referential checks."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(f"{len(errors)} validation error(s): {'; '.join(errors[:5])}")
        self.errors = errors


class LoadError(SyncError):
    """Raised by an upsert for a single record that cannot be written."""


class InvalidTransitionError(SyncError):
    """Raised when a sync run is moved to a state it cannot reach."""


# ---------------------------------------------------------------------------
# Settings / context
# ---------------------------------------------------------------------------

@dataclass
class SyncSettings:
    batch_size: int = 50
    retry_attempts: int = 3
    retry_delay_ms: int = 1000
    dry_run: bool = False

    @property
    def retry_delay_s(self) -> float:
        return self.retry_delay_ms / 1000.0


@dataclass
class SyncContext:
    """Collaborators handed to every entity process when it is built."""

    conn: Any
    source: Any
    layout: Any
    settings: SyncSettings
    run_id: str = ""
    today: date = field(default_factory=date.today)

    @property
    def dry_run(self) -> bool:
        return self.settings.dry_run


# ---------------------------------------------------------------------------
# Per-row and per-stage results
# ---------------------------------------------------------------------------

@dataclass
class RowResult:
    """Outcome of transforming one source row.

    Exactly one of three shapes:
      record set        -> a valid record
      diagnostic set    -> a rejected row, with the reason
      neither           -> a row that intentionally produces nothing
    """

    record: dict[str, Any] | None = None
    diagnostic: str | None = None
    row_number: int | None = None
    raw: list[Any] | None = None

    @classmethod
    def ok(cls, record: dict[str, Any], row_number: int | None = None) -> RowResult:
        return cls(record=record, row_number=row_number)

    @classmethod
    def reject(
        cls,
        diagnostic: str,
        row_number: int | None = None,
        raw: list[Any] | None = None,
    ) -> RowResult:
        return cls(diagnostic=diagnostic, row_number=row_number, raw=raw)

    @classmethod
    def skip(cls, row_number: int | None = None) -> RowResult:
        return cls(row_number=row_number)

    @property
    def is_skip(self) -> bool:
        return self.record is None and self.diagnostic is None


@dataclass
class TransformResult:
    records: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    rejects: list[RowResult] = field(default_factory=list)
    # side effects and counts reported alongside the records
    # (members_deactivated, would_deactivate, units_seeded, ...)
    stats: dict[str, int] = field(default_factory=dict)

    def add(self, result: RowResult) -> None:
        if result.record is not None:
            self.records.append(result.record)
        elif result.diagnostic is not None:
            prefix = f"row {result.row_number}: " if result.row_number is not None else ""
            self.warnings.append(f"{prefix}{result.diagnostic}")
            self.rejects.append(result)

    def bump(self, key: str, n: int = 1) -> None:
        self.stats[key] = self.stats.get(key, 0) + n


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class LoadResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    failures: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.unchanged + self.failed

    def record(self, outcome: str) -> None:
        if outcome == "created":
            self.created += 1
        elif outcome == "updated":
            self.updated += 1
        elif outcome == "unchanged":
            self.unchanged += 1
        else:
            raise ValueError(f"Unknown load outcome {outcome!r}")

    def merge(self, other: LoadResult) -> None:
        self.created += other.created
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.failed += other.failed
        self.failures.extend(other.failures)


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------

@dataclass
class RetryOutcome(Generic[T]):
    value: T | None = None
    attempts: int = 0
    delays: list[float] = field(default_factory=list)
    error: ExtractionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def retry_call(
    operation: Callable[[], T],
    max_attempts: int = 3,
    base_delay_s: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryOutcome[T]:
    """Call operation, retrying retryable ExtractionErrors with backoff.

    The delay before attempt n+1 is base_delay_s * 2**(n-1).  Any other
    exception propagates unchanged on the first occurrence.
    """
    max_attempts = max(1, max_attempts)
    delays: list[float] = []
    attempt = 0
    while True:
        attempt += 1
        try:
            value = operation()
        except ExtractionError as exc:
            if not exc.retryable or attempt >= max_attempts:
                log.error("extract failed after %d attempt(s): %s", attempt, exc)
                return RetryOutcome(attempts=attempt, delays=delays, error=exc)
            delay = base_delay_s * (2 ** (attempt - 1))
            log.warning(
                "extract attempt %d/%d failed (%s); retrying in %.2fs",
                attempt, max_attempts, exc, delay,
            )
            delays.append(delay)
            sleep(delay)
            continue
        return RetryOutcome(value=value, attempts=attempt, delays=delays)


# ---------------------------------------------------------------------------
# Batching
# ---------------------------------------------------------------------------

def batched(items: Iterable[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive lists of at most `size` items, in input order."""
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    batch: list[T] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


# ---------------------------------------------------------------------------
# Entity process + driver
# ---------------------------------------------------------------------------

@dataclass
class EntityProcess:
    name: str
    extract: Callable[[], Any]
    transform: Callable[[Any], TransformResult]
    validate: Callable[[list[dict[str, Any]]], ValidationResult]
    load: Callable[[list[dict[str, Any]]], LoadResult]


@dataclass
class ProcessResult:
    name: str
    status: str = "running"
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_unchanged: int = 0
    records_failed: int = 0
    extract_attempts: int = 0
    duration_ms: int = 0
    error_message: str | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    rejects: list[RowResult] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"

    def fail(self, message: str, errors: list[str] | None = None) -> None:
        self.status = "failed"
        self.error_message = message
        if errors:
            self.errors.extend(errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "records_processed": self.records_processed,
            "records_created": self.records_created,
            "records_updated": self.records_updated,
            "records_unchanged": self.records_unchanged,
            "records_failed": self.records_failed,
            "extract_attempts": self.extract_attempts,
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
            "errors": self.errors[:WARNINGS_IN_REPORT],
            "warnings": self.warnings[:WARNINGS_IN_REPORT],
            "warnings_total": len(self.warnings),
            "stats": dict(self.stats),
        }


def run_process(
    process: EntityProcess,
    settings: SyncSettings,
    sleep: Callable[[float], None] = time.sleep,
) -> ProcessResult:
    """Drive one entity process through extract -> transform -> validate -> load.

    Extraction failures (after retries) and validation errors, whether
    raised by transform or validate, produce a failed ProcessResult;
    nothing is loaded in either case.  In dry-run
    mode the load stage is skipped and the would-be record count reported.
    Unexpected exceptions propagate to the caller, which owns the
    transaction.
    """
    started = time.monotonic()
    result = ProcessResult(name=process.name)
    try:
        outcome = retry_call(
            process.extract,
            max_attempts=settings.retry_attempts,
            base_delay_s=settings.retry_delay_s,
            sleep=sleep,
        )
        result.extract_attempts = outcome.attempts
        if not outcome.ok:
            result.fail(
                f"extract failed after {outcome.attempts} attempt(s): {outcome.error}"
            )
            return result

        try:
            transformed = process.transform(outcome.value)
        except ValidationError as exc:
            result.fail(
                f"transform rejected the extracted data with {len(exc.errors)} error(s)",
                errors=exc.errors,
            )
            return result
        result.warnings.extend(transformed.warnings)
        result.rejects.extend(transformed.rejects)
        result.stats.update(transformed.stats)
        result.records_processed = len(transformed.records)
        log.info(
            "%s: transformed %d record(s), %d warning(s)",
            process.name, len(transformed.records), len(transformed.warnings),
        )

        try:
            validation = process.validate(transformed.records)
        except ValidationError as exc:
            validation = ValidationResult(errors=list(exc.errors))
        result.warnings.extend(validation.warnings)
        if not validation.ok:
            result.fail(
                f"validation failed with {len(validation.errors)} error(s)",
                errors=validation.errors,
            )
            return result

        if settings.dry_run:
            result.stats["would_load"] = len(transformed.records)
            result.status = "completed"
            return result

        loaded = process.load(transformed.records)
        result.records_created = loaded.created
        result.records_updated = loaded.updated
        result.records_unchanged = loaded.unchanged
        result.records_failed = loaded.failed
        result.warnings.extend(loaded.failures)
        result.status = "completed"
        log.info(
            "%s: created=%d updated=%d unchanged=%d failed=%d",
            process.name, loaded.created, loaded.updated,
            loaded.unchanged, loaded.failed,
        )
        return result
    finally:
        result.duration_ms = int((time.monotonic() - started) * 1000)
