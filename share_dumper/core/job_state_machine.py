import logging
from datetime import datetime
from typing import Dict, Set

from share_dumper.core.exceptions import InvalidTransitionError
from share_dumper.models import Job, JobState


class JobStateMachine:
    """
    Gatekeeper for every job state transition.

    JobQueue is the only caller. The machine:
    1. Validates the transition against the table below.
    2. Changes the job's ``state`` field.
    3. Applies the timestamp and progress bookkeeping that belongs to the edge.

    Publishing is left to the queue so notifications keep their order.
    """

    def __init__(self):
        self._transitions: Dict[JobState, Set[JobState]] = {
            JobState.PENDING: {
                JobState.RUNNING,
                JobState.CANCELLED,
            },
            JobState.RUNNING: {
                JobState.COMPLETED,
                JobState.FAILED,
                JobState.CANCELLED,
            },
            JobState.FAILED: {
                JobState.PENDING,  # Retry only
            },
            JobState.COMPLETED: set(),
            JobState.CANCELLED: set(),
        }
        logging.debug("JobStateMachine initialized with %s transition rules", len(self._transitions))

    def can_transition(self, from_state: JobState, to_state: JobState) -> bool:
        return to_state in self._transitions.get(from_state, set())

    def transition(self, job: Job, new_state: JobState, *, error: str | None = None) -> JobState:
        """
        Move ``job`` to ``new_state`` in place.

        Returns:
            The previous state.

        Raises:
            InvalidTransitionError: If the edge is not in the table.
        """
        old_state = job.state
        if not self.can_transition(old_state, new_state):
            raise InvalidTransitionError(job.id, old_state.value, new_state.value)

        logging.info(f"Transition: job {job.id[:8]} | {old_state.value} -> {new_state.value}")
        job.state = new_state

        if new_state == JobState.RUNNING:
            job.started_at = datetime.now()
            job.completed_at = None
            job.error = None
        elif new_state == JobState.PENDING:
            # Retry resets everything the previous run produced
            job.progress = 0.0
            job.error = None
            job.started_at = None
            job.completed_at = None
            job.process_id = None
        else:
            job.completed_at = datetime.now()
            job.process_id = None
            job.error = error
            if new_state == JobState.COMPLETED:
                job.progress = 1.0

        return old_state
