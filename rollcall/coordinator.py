"""Liveness coordinator: concurrent probe rounds merged into the registry."""

import dataclasses
import logging
import math
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime

from .models import CycleReport, EndpointRecord, ProbeResult, ProbeStatus
from .probe import DEFAULT_PROBE_TIMEOUT, probe_endpoint
from .store import RegistryStore, StoreWriteError

logger = logging.getLogger(__name__)

# Extra seconds the join waits beyond the probe timeout before abandoning probes.
DEFAULT_GRACE_SECONDS = 0.5

# Upper bound on concurrent probes; excess probes queue in the pool.
DEFAULT_MAX_WORKERS = 32

ProbeFunc = Callable[[str, int, float], ProbeResult]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def merge_results(
    records: list[EndpointRecord],
    results: dict[tuple[str, int], ProbeResult],
    now: datetime,
) -> list[EndpointRecord]:
    """Apply one round of probe results to a record set.

    Records are matched by (address, port). A record with no matching result
    (registered or re-pointed after the snapshot) is returned unchanged.
    A successful probe refreshes last_seen_at; a failed one keeps it.
    """
    merged: list[EndpointRecord] = []
    for record in records:
        result = results.get((record.address, record.port))
        if result is None:
            merged.append(record)
        elif result.is_up:
            merged.append(dataclasses.replace(record, is_online=True, last_seen_at=now))
        else:
            merged.append(dataclasses.replace(record, is_online=False))
    return merged


class LivenessCoordinator:
    """Runs one concurrent probe round per dashboard view.

    Example:
        coordinator = LivenessCoordinator(store, timeout=2.0)
        report = coordinator.run_cycle()
    """

    def __init__(
        self,
        store: RegistryStore,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        grace: float = DEFAULT_GRACE_SECONDS,
        max_workers: int = DEFAULT_MAX_WORKERS,
        probe: ProbeFunc = probe_endpoint,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Registry store that owns the canonical record set.
            timeout: Per-probe connect timeout in seconds.
            grace: Extra seconds allowed past the timeout before abandoning probes.
            max_workers: Maximum number of probes in flight at once.
            probe: Probe function, called as probe(address, port, timeout).
            clock: Source of "now" for last_seen_at stamps.
        """
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self._store = store
        self._timeout = timeout
        self._grace = max(grace, 0.0)
        self._max_workers = max_workers
        self._probe = probe
        self._clock = clock

    def run_cycle(self) -> CycleReport:
        """Snapshot, probe every record, merge onto a fresh read and persist.

        Never raises for probe or write failures: a failed write is reported
        through CycleReport.persisted and CycleReport.error.
        """
        start = time.monotonic()
        snapshot = self._store.load()

        results = self._probe_all(snapshot) if snapshot else {}
        now = self._clock()

        def _merge(fresh: list[EndpointRecord]) -> list[EndpointRecord]:
            return merge_results(fresh, results, now)

        try:
            merged = self._store.update(_merge)
            persisted, error = True, None
        except StoreWriteError as e:
            logger.error("View cycle results not persisted: %s", e)
            merged = merge_results(snapshot, results, now)
            persisted, error = False, str(e)

        duration_ms = int((time.monotonic() - start) * 1000)
        online = sum(1 for r in merged if r.is_online)
        logger.info(
            "View cycle: %d endpoint(s), %d online, %d offline (%dms)",
            len(merged),
            online,
            len(merged) - online,
            duration_ms,
        )
        return CycleReport(records=merged, persisted=persisted, error=error, duration_ms=duration_ms)

    def _deadline(self, count: int, workers: int) -> float:
        waves = math.ceil(count / workers)
        return waves * self._timeout + self._grace

    def _probe_all(self, records: list[EndpointRecord]) -> dict[tuple[str, int], ProbeResult]:
        """Probe every record concurrently and join with a hard deadline."""
        workers = min(len(records), self._max_workers)
        deadline = self._deadline(len(records), workers)
        results: dict[tuple[str, int], ProbeResult] = {}

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="probe")
        try:
            futures: dict[Future, EndpointRecord] = {
                executor.submit(self._probe, record.address, record.port, self._timeout): record
                for record in records
            }
            done, not_done = wait(futures, timeout=deadline)

            for future in done:
                record = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    logger.error("Probe for %s:%d failed: %s", record.address, record.port, e)
                    result = self._failed(record, str(e))
                results[(record.address, record.port)] = result
                logger.debug(
                    "%s:%d %s (%dms)",
                    record.address,
                    record.port,
                    result.status.value,
                    result.response_time_ms,
                )

            for future in not_done:
                record = futures[future]
                future.cancel()
                logger.warning("Probe for %s:%d exceeded %.1fs deadline", record.address, record.port, deadline)
                results[(record.address, record.port)] = self._failed(record, "probe deadline exceeded")
        finally:
            # Do not wait for abandoned probes still blocked in the network stack
            executor.shutdown(wait=False, cancel_futures=True)

        return results

    def _failed(self, record: EndpointRecord, message: str) -> ProbeResult:
        return ProbeResult(
            address=record.address,
            port=record.port,
            status=ProbeStatus.ERROR,
            checked_at=self._clock(),
            error_message=message,
        )
