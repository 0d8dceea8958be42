"""Group orchestrator: bounded-concurrency discovery over a group's pincodes."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

import structlog

from .config import DiscoverySettings
from .engine.collection import CollectionManager
from .engine.extractor import ExtractionClient, coerce_records
from .engine.models import Group, GroupStatus
from .engine.state import (
    active_count,
    all_scanned,
    complete,
    fail,
    mark_attempt,
    next_eligible,
    record_failure,
    record_success,
    retry_item,
    scanned_count,
    start_discovery,
    stop_discovery,
)
from .logging_conf import configure_logging, group_logger


@dataclass(slots=True)
class AttemptEvent:
    """Outcome of a single extraction attempt for one pincode."""

    label: str
    group: str
    code: str
    attempt: int
    max_attempts: int
    outcome: str  # success | retry | failed | discarded
    records: int = 0
    error: str | None = None


class DiscoveryObserver(Protocol):
    def on_attempt(self, event: AttemptEvent) -> None: ...

    def on_update(self, group: Group) -> None: ...


class LoggingObserver:
    """Default observer writing attempt outcomes to the group's log file."""

    def __init__(self, logger: structlog.BoundLogger) -> None:
        self.logger = logger

    def on_attempt(self, event: AttemptEvent) -> None:
        fields = {
            "pincode": event.code,
            "attempt": event.attempt,
            "max_attempts": event.max_attempts,
        }
        if event.outcome == "success":
            self.logger.info("item_scanned", records=event.records, **fields)
        elif event.outcome == "retry":
            self.logger.warning("item_retry_scheduled", error=event.error, **fields)
        elif event.outcome == "failed":
            self.logger.error("item_failed", error=event.error, **fields)
        else:
            self.logger.info("item_result_discarded", **fields)

    def on_update(self, group: Group) -> None:
        self.logger.debug(
            "group_updated",
            status=group.status.value,
            scanned=scanned_count(group),
            total=len(group.items),
            results=group.result_count,
        )


class _RunToken:
    """Cancellation handle for one discovery run.

    Every ``start`` (or retry that revives an idle group) opens a fresh token;
    tasks keep a reference to the token they were launched under, so results
    from an older run can never mutate the group again.
    """

    __slots__ = ("cancelled", "stop_event")

    def __init__(self) -> None:
        self.cancelled = False
        self.stop_event = asyncio.Event()

    def cancel(self) -> None:
        self.cancelled = True
        self.stop_event.set()


class GroupOrchestrator:
    """Drive discovery for one group.

    ``start``, ``stop`` and ``retry_item`` are synchronous and must be called
    from inside a running event loop; extraction runs in background tasks and
    every state change goes through :meth:`CollectionManager.apply`.
    """

    def __init__(
        self,
        manager: CollectionManager,
        label: str,
        name: str,
        extractor: ExtractionClient,
        settings: DiscoverySettings | None = None,
        observer: DiscoveryObserver | None = None,
    ) -> None:
        self.manager = manager
        self.label = label
        self.name = name
        self.extractor = extractor
        self.settings = settings or DiscoverySettings()
        self.observer = observer or LoggingObserver(group_logger(label, name))
        self.logger = configure_logging().bind(component="orchestrator", label=label, group=name)
        manager.get_group(label, name)  # fail fast on unknown groups
        self._token: _RunToken | None = None
        self._tasks: set[asyncio.Task] = set()
        self._exhausted: set[str] = set()
        self._finished = asyncio.Event()
        self._finished.set()

    # ------------------------------------------------------------------
    @property
    def group(self) -> Group:
        return self.manager.get_group(self.label, self.name)

    @property
    def is_running(self) -> bool:
        return self._token is not None and not self._token.cancelled

    # ------------------------------------------------------------------
    # Public controls
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self.is_running:
            return
        self._commit(start_discovery)
        self._open_run()
        self._schedule()

    def stop(self) -> None:
        """Cancel the current run and mark the group stopped.

        A group that already settled as ``completed`` keeps that status, since
        every pincode is scanned; any other status becomes ``stopped``.
        """

        token = self._token
        self._token = None
        if token is not None:
            token.cancel()
        group = self.group
        settled = group.status in (GroupStatus.STOPPED, GroupStatus.COMPLETED)
        if not settled or active_count(group):
            self._commit(stop_discovery)
            self.logger.info("run_stopped", scanned=scanned_count(self.group))
        self._finished.set()

    def retry_item(self, code: str) -> None:
        self._commit(lambda group: retry_item(group, code))
        self._exhausted.discard(code)
        self.logger.info("item_retry_requested", pincode=code)
        if not self.is_running:
            self._open_run()
        self._schedule()

    async def wait(self) -> Group:
        await self._finished.wait()
        return self.group

    async def run(self) -> Group:
        self.start()
        return await self.wait()

    async def drain(self) -> None:
        """Wait for every extraction task, including ones whose run was stopped."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop the run and cancel outstanding extraction calls."""

        self.stop()
        for task in list(self._tasks):
            task.cancel()
        await self.drain()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def _open_run(self) -> None:
        self._token = _RunToken()
        self._exhausted = set()
        self._finished.clear()
        self.logger.info("run_started", items=len(self.group.items))

    def _finish_run(self, group: Group) -> None:
        self._token = None
        self._finished.set()
        self.logger.info(
            "run_finished",
            status=group.status.value,
            scanned=scanned_count(group),
            results=group.result_count,
        )

    def _schedule(self) -> None:
        token = self._token
        if token is None or token.cancelled:
            return
        group = self.group
        if group.status is not GroupStatus.RUNNING:
            return
        active = active_count(group)
        while active < self.settings.max_concurrent_items:
            item = next_eligible(group, exclude=self._exhausted)
            if item is None:
                break
            # 先提交 scanning 状态，下一轮挑选时该 pincode 已不再 eligible
            group = self._commit(lambda current, code=item.code: mark_attempt(current, code, 1))
            self._launch(item.code, token)
            active += 1
        else:
            return
        if active == 0:
            if all_scanned(group):
                group = self._commit(complete)
            else:
                group = self._commit(fail)
            self._finish_run(group)

    def _launch(self, code: str, token: _RunToken) -> None:
        task = asyncio.create_task(self._run_item(code, token), name=f"discover:{self.name}:{code}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("item_task_crashed", task=task.get_name(), error=str(exc))

    async def _run_item(self, code: str, token: _RunToken) -> None:
        try:
            await self._process(code, token)
        except Exception as exc:  # noqa: BLE001
            self.logger.error("item_task_crashed", pincode=code, error=str(exc))
            if token is self._token and not token.cancelled:
                # 记为失败，保证本轮仍能收尾
                self._exhausted.add(code)
                self._commit(lambda group: record_failure(group, code))
        finally:
            if token is self._token and not token.cancelled:
                self._schedule()

    async def _process(self, code: str, token: _RunToken) -> None:
        max_attempts = self.settings.max_attempts
        for attempt in range(1, max_attempts + 1):
            if token.cancelled:
                return
            if attempt > 1:
                self._commit(lambda group: mark_attempt(group, code, attempt))
            try:
                records = coerce_records(await self.extractor.extract(code, self.group.results))
            except Exception as exc:  # noqa: BLE001
                if token.cancelled:
                    self._notify(code, attempt, "discarded", error=str(exc))
                    return
                if attempt < max_attempts:
                    self._notify(code, attempt, "retry", error=str(exc))
                    if not await self._backoff(token):
                        return
                    continue
                self._exhausted.add(code)
                self._notify(code, attempt, "failed", error=str(exc))
                self._commit(lambda group: record_failure(group, code))
                return
            if token.cancelled:
                self._notify(code, attempt, "discarded", records=len(records))
                return
            before = self.group.result_count
            after = self._commit(lambda group: record_success(group, code, records))
            self._notify(code, attempt, "success", records=after.result_count - before)
            return

    async def _backoff(self, token: _RunToken) -> bool:
        """Sleep for the retry delay; return ``False`` if the run was stopped meanwhile."""

        delay = self.settings.retry_delay_seconds
        if delay > 0 and not token.cancelled:
            try:
                await asyncio.wait_for(token.stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        return not token.cancelled

    # ------------------------------------------------------------------
    def _commit(self, updater: Callable[[Group], Group]) -> Group:
        before = self.group
        after = self.manager.apply(self.label, self.name, updater)
        if after is not before:
            try:
                self.observer.on_update(after)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("observer_failed", error=str(exc))
        return after

    def _notify(self, code: str, attempt: int, outcome: str, **extra) -> None:
        event = AttemptEvent(
            label=self.label,
            group=self.name,
            code=code,
            attempt=attempt,
            max_attempts=self.settings.max_attempts,
            outcome=outcome,
            **extra,
        )
        try:
            self.observer.on_attempt(event)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("observer_failed", error=str(exc))


async def run_groups(orchestrators: Sequence[GroupOrchestrator]) -> list[Group]:
    """Run several independent groups concurrently and return their final snapshots."""

    return list(await asyncio.gather(*(orchestrator.run() for orchestrator in orchestrators)))


__all__ = [
    "AttemptEvent",
    "DiscoveryObserver",
    "GroupOrchestrator",
    "LoggingObserver",
    "run_groups",
]
