"""Tick loop and run lifecycle for scheduled agent jobs."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Protocol

from agent_schedule.scheduler.backend.base import AgentBackend, AgentRunError, McpConfigError
from agent_schedule.scheduler.backend.mcp_config import build_mcp_config
from agent_schedule.scheduler.backend.transcript import detect_question
from agent_schedule.scheduler.due import interval_duration, is_due
from agent_schedule.scheduler.errors import (
    JobNotFoundError,
    JobStateError,
    SchedulerStoppedError,
)
from agent_schedule.scheduler.models import ExecuteResult, Job, JobRun, JobStatus, McpServer
from agent_schedule.storage.common import to_iso, utc_now

logger = logging.getLogger(__name__)

JOBS_UPDATED_EVENT = "jobs:updated"

_NOTIFICATIONS: dict[JobStatus, tuple[str, str]] = {
    JobStatus.RUNNING: ("Job Started", "{name} is now running"),
    JobStatus.SUCCESS: ("Job Completed", "{name} finished successfully"),
    JobStatus.FAILED: ("Job Failed", "{name} failed"),
    JobStatus.WAITING: ("Job Needs Input", "{name} is waiting for your answer"),
}


class JobStore(Protocol):
    """Persistence operations the scheduler relies on."""

    def list_jobs(self) -> list[Job]: ...

    def get_job(self, job_id: str) -> Job | None: ...

    def update_job(self, job: Job) -> None: ...

    def create_run(self, run: JobRun) -> JobRun: ...

    def update_run(self, run: JobRun) -> None: ...

    def get_latest_run(self, job_id: str) -> JobRun | None: ...

    def prune_runs(self, job_id: str) -> int: ...

    def get_mcp_servers_for_job(self, job_id: str) -> list[McpServer]: ...

    def reset_stuck_running_jobs(self) -> int: ...


class Notifier(Protocol):
    def notify(self, job_name: str, status: JobStatus) -> None: ...


class LoggingNotifier:
    """Notifier that reports job transitions to the application log."""

    def notify(self, job_name: str, status: JobStatus) -> None:
        template = _NOTIFICATIONS.get(JobStatus(status))
        if template is None:
            return
        title, body = template
        logger.info("%s: %s", title, body.format(name=job_name))


class Scheduler:
    """Runs due jobs on a fixed tick and executes on-demand runs and answers.

    The loop thread runs due jobs one after another. ``run_now`` and
    ``answer_question`` hand work to their own threads. All of them share one
    stop event, which also cancels in-flight agent processes.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: JobStore,
        backend: AgentBackend,
        tick_interval_seconds: float = 60.0,
        emit: Callable[[str], None] | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.backend = backend
        self.tick_interval_seconds = tick_interval_seconds
        self._emit_callback = emit
        self.notifier = notifier or LoggingNotifier()
        self._clock = clock
        self._stop_event = threading.Event()
        self._loop_thread: threading.Thread | None = None
        self._tick_lock = threading.Lock()
        self._claim_lock = threading.Lock()
        self._workers: set[threading.Thread] = set()
        self._workers_lock = threading.Lock()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        """Recover from a previous crash and start the tick loop."""

        if self._stop_event.is_set():
            raise SchedulerStoppedError("scheduler was stopped")
        if self._loop_thread is not None and self._loop_thread.is_alive():
            return

        self.reset_stuck_jobs()
        self._loop_thread = threading.Thread(
            target=self._run_loop,
            name="agent-schedule-loop",
            daemon=True,
        )
        self._loop_thread.start()
        logger.info("Scheduler started, tick interval %ss", self.tick_interval_seconds)

    def stop(self) -> None:
        """Cancel in-flight work and wait for every scheduler thread to exit."""

        with self._workers_lock:
            self._stop_event.set()
        if self._loop_thread is not None:
            self._loop_thread.join()
        self.wait_idle()
        logger.info("Scheduler stopped")

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Join on-demand threads; return False if some are still running."""

        with self._workers_lock:
            workers = list(self._workers)
        for worker in workers:
            worker.join(timeout=timeout)
        return not any(worker.is_alive() for worker in workers)

    def reset_stuck_jobs(self) -> int:
        reset = self.store.reset_stuck_running_jobs()
        if reset:
            logger.warning("Reset %d job(s) left running by a previous process", reset)
            self._emit()
        return reset

    def tick(self) -> int:
        """Run every due job once, sequentially; return how many were started."""

        with self._tick_lock:
            now = self._clock()
            started = 0
            for listed in self.store.list_jobs():
                if self._stop_event.is_set():
                    break
                try:
                    claimed = self._claim_due(listed.job_id, now)
                    if claimed is None:
                        continue
                    started += 1
                    self._execute_claimed(*claimed)
                except Exception:  # noqa: BLE001
                    logger.exception("Scheduled execution of job %s failed", listed.job_id)
            return started

    def run_now(self, job_id: str) -> None:
        """Start ``job_id`` on a background thread regardless of its schedule."""

        if self._stop_event.is_set():
            raise SchedulerStoppedError("scheduler was stopped")

        with self._claim_lock:
            job = self.store.get_job(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status is JobStatus.RUNNING:
                raise JobStateError(job_id, "job is already running")
            servers = self._validated_servers(job)
            run = self._mark_running(job, self._clock())

        spawned = self._spawn(
            lambda: self._execute_claimed(job, run, servers),
            name=f"run-now-{job_id}",
        )
        if not spawned:
            error = SchedulerStoppedError("scheduler was stopped")
            self._finish_execution(job, run, result=None, error=error)
            raise error

    def answer_question(self, job_id: str, answer: str) -> None:
        """Resume a ``waiting`` job's conversation with ``answer``."""

        if self._stop_event.is_set():
            raise SchedulerStoppedError("scheduler was stopped")

        with self._claim_lock:
            job = self.store.get_job(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status is not JobStatus.WAITING:
                raise JobStateError(job_id, "job is not waiting for an answer")
            if not answer.strip():
                raise ValueError("answer must not be empty")
            servers = self._validated_servers(job)

            job.status = JobStatus.RUNNING
            job.pending_question = ""
            self.store.update_job(job)
            self._emit()
            self._notify(job)

            run = self.store.get_latest_run(job_id)
            if run is None:
                run = self.store.create_run(
                    JobRun(job_id=job_id, started_at=self._clock(), status=JobStatus.RUNNING),
                )
            else:
                run.status = JobStatus.RUNNING
                run.pending_question = ""
                run.ended_at = None
                self.store.update_run(run)
            self._emit()

        prior_output = run.output
        spawned = self._spawn(
            lambda: self._answer_claimed(job, run, servers, answer, prior_output),
            name=f"answer-{job_id}",
        )
        if not spawned:
            error = SchedulerStoppedError("scheduler was stopped")
            self._finish_execution(job, run, result=None, error=error, refresh_schedule=False)
            raise error

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:  # noqa: BLE001
                logger.exception("Scheduler tick failed")
            if self._stop_event.wait(self.tick_interval_seconds):
                return

    def _claim_due(
        self,
        job_id: str,
        now: datetime,
    ) -> tuple[Job, JobRun, list[McpServer]] | None:
        with self._claim_lock:
            job = self.store.get_job(job_id)
            if job is None or not is_due(job, now):
                return None
            try:
                servers = self._validated_servers(job)
            except McpConfigError as error:
                logger.warning("Job %s has an invalid MCP configuration: %s", job_id, error)
                self._fail_unstarted(job, str(error), now)
                return None
            return job, self._mark_running(job, now), servers

    def _validated_servers(self, job: Job) -> list[McpServer]:
        servers = self.store.get_mcp_servers_for_job(job.job_id)
        build_mcp_config(servers)
        return servers

    def _mark_running(self, job: Job, started_at: datetime) -> JobRun:
        job.status = JobStatus.RUNNING
        job.output = ""
        job.pending_question = ""
        self.store.update_job(job)
        self._emit()
        self._notify(job)
        logger.info("Running job %s (%s)", job.name, job.job_id)
        return self.store.create_run(
            JobRun(job_id=job.job_id, started_at=started_at, status=JobStatus.RUNNING),
        )

    def _fail_unstarted(self, job: Job, message: str, now: datetime) -> None:
        job.status = JobStatus.FAILED
        job.output = message
        job.pending_question = ""
        _refresh_schedule(job, now)
        self.store.update_job(job)
        self._emit()
        self._notify(job)

    def _execute_claimed(self, job: Job, run: JobRun, servers: Sequence[McpServer]) -> None:
        result, error = self._call_backend(
            lambda: self.backend.execute(job, servers, cancel_event=self._stop_event),
            job,
        )
        self._finish_execution(job, run, result=result, error=error)

    def _answer_claimed(  # noqa: PLR0913
        self,
        job: Job,
        run: JobRun,
        servers: Sequence[McpServer],
        answer: str,
        prior_output: str,
    ) -> None:
        result, error = self._call_backend(
            lambda: self.backend.answer(job, servers, answer, cancel_event=self._stop_event),
            job,
        )
        if result is not None and prior_output:
            result = ExecuteResult(
                transcript=f"{prior_output}\n\n{result.transcript}",
                raw_lines=result.raw_lines,
            )
        self._finish_execution(job, run, result=result, error=error, refresh_schedule=False)

    def _call_backend(
        self,
        call: Callable[[], ExecuteResult],
        job: Job,
    ) -> tuple[ExecuteResult | None, Exception | None]:
        try:
            return call(), None
        except AgentRunError as error:
            logger.warning("Job %s failed: %s", job.job_id, error)
            return None, error
        except Exception as error:  # noqa: BLE001
            logger.exception("Unexpected error while running job %s", job.job_id)
            return None, error

    def _finish_execution(
        self,
        job: Job,
        run: JobRun,
        *,
        result: ExecuteResult | None,
        error: Exception | None,
        refresh_schedule: bool = True,
    ) -> None:
        ended_at = self._clock()
        if error is not None or result is None:
            job.status = JobStatus.FAILED
            job.output = str(error) or type(error).__name__
            job.pending_question = ""
        else:
            question = detect_question(result.raw_lines)
            job.status = JobStatus.WAITING if question else JobStatus.SUCCESS
            job.output = result.transcript
            job.pending_question = question
        if refresh_schedule:
            _refresh_schedule(job, run.started_at)
        self.store.update_job(job)

        run.status = job.status
        run.output = job.output
        run.pending_question = job.pending_question
        run.ended_at = None if job.status is JobStatus.WAITING else ended_at
        self.store.update_run(run)
        self.store.prune_runs(job.job_id)

        self._emit()
        self._notify(job)
        logger.info("Job %s finished with status %s", job.job_id, job.status.value)

    def _spawn(self, target: Callable[[], None], *, name: str) -> bool:
        """Start ``target`` on a tracked thread; return False once the scheduler is stopped."""

        def _run() -> None:
            try:
                target()
            except Exception:  # noqa: BLE001
                logger.exception("Background job thread %s failed", name)
            finally:
                with self._workers_lock:
                    self._workers.discard(threading.current_thread())

        thread = threading.Thread(target=_run, name=name, daemon=True)
        with self._workers_lock:
            if self._stop_event.is_set():
                return False
            self._workers.add(thread)
            thread.start()
        return True

    def _emit(self) -> None:
        if self._emit_callback is None:
            return
        try:
            self._emit_callback(JOBS_UPDATED_EVENT)
        except Exception:  # noqa: BLE001
            logger.exception("Change listener failed")

    def _notify(self, job: Job) -> None:
        try:
            self.notifier.notify(job.name, job.status)
        except Exception:  # noqa: BLE001
            logger.exception("Notifier failed for job %s", job.job_id)


def _refresh_schedule(job: Job, now: datetime) -> None:
    job.last_run = to_iso(now)
    try:
        job.next_run = to_iso(now + interval_duration(job.interval_value, job.interval_unit))
    except OverflowError:
        logger.warning("Next run of job %s is out of calendar range", job.job_id)
        job.next_run = ""
