import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence

from share_dumper.config import Settings
from share_dumper.core.events.domain_event import DomainEvent
from share_dumper.core.events.event_bus import DomainEventBus
from share_dumper.core.events.job_events import (
    JobProgressEvent,
    JobQueueChangedEvent,
    JobStatusChangedEvent,
)
from share_dumper.core.exceptions import CopyCancelled, JobNotFoundError
from share_dumper.core.job_state_machine import JobStateMachine
from share_dumper.models import Job, JobSpec, JobState, JobSubmission
from share_dumper.services.copy.copy_operation import CopyOperation, resolve_rsync_path
from share_dumper.services.copy.job_log import JobLogManager
from share_dumper.services.copy.models import CopyResult, CopyStatus
from share_dumper.services.process.subprocess_runner import SubprocessRunner

OperationFactory = Callable[..., CopyOperation]


class JobQueueService:
    """
    Ordered list of copy jobs with a single transfer slot.

    The queue is the only writer of Job state. At most one job is Running;
    the next one is the first Pending job in current list order. Every state
    change and progress update goes through one notification channel so
    subscribers see them in the order they happened.
    """

    def __init__(
        self,
        settings: Settings,
        runner: SubprocessRunner,
        job_log: JobLogManager,
        event_bus: Optional[DomainEventBus] = None,
        operation_factory: Optional[OperationFactory] = None,
    ):
        self.settings = settings
        self._runner = runner
        self._job_log = job_log
        self._event_bus = event_bus
        self._operation_factory = operation_factory or self._create_operation
        self._rsync_path = resolve_rsync_path(settings.rsync_path)

        self._jobs: List[Job] = []
        self._state_machine = JobStateMachine()

        self._active_job_id: Optional[str] = None
        self._active_operation: Optional[CopyOperation] = None
        self._active_task: Optional[asyncio.Task] = None

        self._notifications: Optional[asyncio.Queue] = None
        self._dispatcher_task: Optional[asyncio.Task] = None

        logging.info(f"JobQueueService initialized (rsync: {self._rsync_path})")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_jobs(self) -> List[Job]:
        """Snapshot of every job in queue order."""
        return [job.model_copy(deep=True) for job in self._jobs]

    def get_job(self, job_id: str) -> Job:
        return self._get(job_id).model_copy(deep=True)

    @property
    def running_job(self) -> Optional[Job]:
        for job in self._jobs:
            if job.state == JobState.RUNNING:
                return job
        return None

    @property
    def current_index(self) -> Optional[int]:
        """Position of the running job in the list, derived on every call."""
        for index, job in enumerate(self._jobs):
            if job.state == JobState.RUNNING:
                return index
        return None

    @property
    def is_idle(self) -> bool:
        return self.running_job is None

    def get_statistics(self) -> Dict:
        counts = {state.value: 0 for state in JobState}
        for job in self._jobs:
            counts[job.state.value] += 1
        running = self.running_job
        return {
            "total_jobs": len(self._jobs),
            "state_counts": counts,
            "running_job_id": running.id if running else None,
            "current_index": self.current_index,
        }

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def submit(self, submission: JobSubmission) -> Job:
        """Append a Pending job and start it right away if the slot is free."""
        rsync_args = submission.rsync_args
        if rsync_args is None:
            rsync_args = self.settings.rsync_flags.arguments

        job = Job(
            server_host=submission.server_host,
            sources=list(submission.sources),
            destination=submission.destination,
            rsync_args=list(rsync_args),
        )
        job.log_path = str(self._job_log.log_path_for(job.id, job.created_at))
        self._jobs.append(job)

        logging.info(f"Job submitted: {job.id[:8]} {job.display_name} (queue length {len(self._jobs)})")
        self._notify(JobStatusChangedEvent(job_id=job.id, old_state=None, new_state=JobState.PENDING))
        self._notify(JobQueueChangedEvent(reason="submitted", job_ids=(job.id,)))

        self._promote_next()
        return job.model_copy(deep=True)

    async def cancel(self, job_id: str) -> bool:
        """
        Cancel a running or pending job.

        A running job is only marked Cancelled once its process has exited;
        this coroutine returns after that. Returns False for finished jobs.
        """
        job = self._get(job_id)

        if job.state == JobState.RUNNING:
            operation = self._active_operation
            task = self._active_task
            if operation is not None:
                operation.cancel()
            if task is not None:
                await asyncio.shield(task)
            return True

        if job.state == JobState.PENDING:
            self._transition(job, JobState.CANCELLED, error=str(CopyCancelled()))
            return True

        logging.info(f"Ignoring cancel for job {job_id[:8]} in state {job.state.value}")
        return False

    def retry(self, job_id: str) -> bool:
        """Move a Failed job back to Pending in place. Returns False otherwise."""
        job = self._get(job_id)
        if job.state != JobState.FAILED:
            logging.info(f"Ignoring retry for job {job_id[:8]} in state {job.state.value}")
            return False

        self._transition(job, JobState.PENDING)
        self._promote_next()
        return True

    def reorder(self, from_positions: Sequence[int], to_position: int) -> None:
        """
        Move the jobs at ``from_positions`` so they sit before ``to_position``.

        ``to_position`` indexes the list as it was before the move
        (``len(jobs)`` moves to the end). A running job keeps running; only
        its place in the list changes.
        """
        positions = sorted(set(from_positions))
        if not positions:
            return
        if positions[0] < 0 or positions[-1] >= len(self._jobs):
            raise IndexError(f"Positions {list(from_positions)} out of range for {len(self._jobs)} jobs")
        if not 0 <= to_position <= len(self._jobs):
            raise IndexError(f"Target position {to_position} out of range for {len(self._jobs)} jobs")

        moving = [self._jobs[i] for i in positions]
        remaining = [job for i, job in enumerate(self._jobs) if i not in positions]
        insert_at = to_position - sum(1 for i in positions if i < to_position)
        self._jobs = remaining[:insert_at] + moving + remaining[insert_at:]

        logging.info(f"Reordered {len(moving)} job(s) to position {insert_at}")
        self._notify(JobQueueChangedEvent(reason="reordered", job_ids=tuple(job.id for job in moving)))

    def prune_finished(self) -> int:
        """Remove every Done, Failed and Cancelled job. Returns the number removed."""
        removed = [job for job in self._jobs if job.state.is_finished]
        if not removed:
            return 0

        self._jobs = [job for job in self._jobs if not job.state.is_finished]
        logging.info(f"Pruned {len(removed)} finished job(s)")
        self._notify(JobQueueChangedEvent(reason="pruned", job_ids=tuple(job.id for job in removed)))

        self._promote_next()
        return len(removed)

    async def wait_until_idle(self) -> None:
        """Wait until no job is running and nothing is Pending."""
        while True:
            task = self._active_task
            if task is None:
                return
            await asyncio.shield(task)

    async def drain_notifications(self) -> None:
        """Wait until every queued notification has been published."""
        if self._notifications is not None:
            await self._notifications.join()

    async def shutdown(self) -> None:
        """Cancel the running job and stop the notification dispatcher."""
        running = self.running_job
        if running is not None:
            logging.info(f"Shutting down - cancelling running job {running.id[:8]}")
            await self.cancel(running.id)

        await self.drain_notifications()
        if self._dispatcher_task is not None:
            self._dispatcher_task.cancel()
            await asyncio.gather(self._dispatcher_task, return_exceptions=True)
            self._dispatcher_task = None
        logging.info("JobQueueService stopped")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _create_operation(self, spec: JobSpec, on_progress, on_process) -> CopyOperation:
        return CopyOperation(
            spec,
            runner=self._runner,
            job_log=self._job_log,
            rsync_path=self._rsync_path,
            on_progress=on_progress,
            on_process=on_process,
        )

    def _promote_next(self) -> None:
        if self.running_job is not None or self._active_task is not None:
            return

        next_job = next((job for job in self._jobs if job.state == JobState.PENDING), None)
        if next_job is None:
            logging.debug("Job queue idle")
            return

        self._transition(next_job, JobState.RUNNING)
        operation = self._operation_factory(
            next_job.to_spec(),
            on_progress=partial(self._update_progress, next_job.id),
            on_process=partial(self._update_process_id, next_job.id),
        )
        self._active_job_id = next_job.id
        self._active_operation = operation
        self._active_task = asyncio.create_task(
            self._run_operation(next_job.id, operation), name=f"copy-job-{next_job.id[:8]}"
        )

    async def _run_operation(self, job_id: str, operation: CopyOperation) -> None:
        try:
            result = await operation.execute()
        except Exception as e:
            logging.error(f"Unexpected error in copy job {job_id[:8]}: {e}", exc_info=True)
            now = datetime.now()
            result = CopyResult(
                status=CopyStatus.FAILED, start_time=now, end_time=now, message=f"Unexpected error: {e}"
            )
        self._handle_completion(job_id, result)

    def _handle_completion(self, job_id: str, result: CopyResult) -> None:
        self._active_job_id = None
        self._active_operation = None
        self._active_task = None

        job = self._find(job_id)
        if job is None or job.state != JobState.RUNNING:
            logging.warning(f"Completion for job {job_id[:8]} arrived but it is no longer running")
        elif result.status == CopyStatus.SUCCEEDED:
            self._transition(job, JobState.COMPLETED)
        elif result.status == CopyStatus.CANCELLED:
            self._transition(job, JobState.CANCELLED, error=result.message)
        else:
            self._transition(job, JobState.FAILED, error=result.message)

        self._promote_next()

    def _update_progress(self, job_id: str, fraction: float) -> None:
        job = self._find(job_id)
        if job is None or job.state != JobState.RUNNING:
            return

        fraction = min(1.0, max(0.0, fraction))
        # Progress never moves backwards while running
        if fraction <= job.progress:
            return

        job.progress = fraction
        self._notify(JobProgressEvent(job_id=job_id, progress=fraction))

    def _update_process_id(self, job_id: str, pid: Optional[int]) -> None:
        job = self._find(job_id)
        if job is not None and job.state == JobState.RUNNING:
            job.process_id = pid

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _find(self, job_id: str) -> Optional[Job]:
        return next((job for job in self._jobs if job.id == job_id), None)

    def _get(self, job_id: str) -> Job:
        job = self._find(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _transition(self, job: Job, new_state: JobState, error: Optional[str] = None) -> None:
        old_state = self._state_machine.transition(job, new_state, error=error)
        self._notify(
            JobStatusChangedEvent(job_id=job.id, old_state=old_state, new_state=new_state, error=job.error)
        )

    def _notify(self, event: DomainEvent) -> None:
        if self._event_bus is None:
            return

        if self._notifications is None:
            self._notifications = asyncio.Queue()
        self._notifications.put_nowait(event)

        if self._dispatcher_task is None or self._dispatcher_task.done():
            self._dispatcher_task = asyncio.create_task(self._dispatch_notifications())

    async def _dispatch_notifications(self) -> None:
        while True:
            event = await self._notifications.get()
            try:
                await self._event_bus.publish(event)
            finally:
                self._notifications.task_done()
