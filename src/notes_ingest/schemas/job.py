"""Job status and report schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Outcome of a job run."""

    SUCCESS = "success"
    LOCKED = "locked"
    GAP_DETECTED = "gap_detected"
    SWAP_REFUSED = "swap_refused"
    TRANSIENT_FAILURE = "transient_failure"
    FAILED = "failed"


# Process exit codes; LOCKED uses EX_TEMPFAIL so schedulers retry later.
EXIT_CODES: dict[JobStatus, int] = {
    JobStatus.SUCCESS: 0,
    JobStatus.FAILED: 1,
    JobStatus.GAP_DETECTED: 3,
    JobStatus.SWAP_REFUSED: 4,
    JobStatus.TRANSIENT_FAILURE: 69,
    JobStatus.LOCKED: 75,
}


class JobReport(BaseModel):
    """Summary returned by every job entry point."""

    job: str
    status: JobStatus
    processed: int = 0
    skipped: int = 0
    gaps: list[int] = Field(default_factory=list, description="Ids of gap records written")
    detail: str = ""
    started_at: datetime
    finished_at: datetime | None = None

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.status]
