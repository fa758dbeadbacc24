from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class CopyStatus(str, Enum):
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class CopyResult:
    """Terminal result of one CopyOperation execution."""

    status: CopyStatus
    start_time: datetime
    end_time: datetime
    message: Optional[str] = None
    exit_code: Optional[int] = None
    sources_completed: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == CopyStatus.SUCCEEDED

    @property
    def elapsed_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    def get_summary(self) -> str:
        """Get a human-readable summary of the copy operation."""
        if self.status == CopyStatus.SUCCEEDED:
            return (
                f"Copied {len(self.sources_completed)} source(s) "
                f"in {self.elapsed_seconds:.1f}s"
            )
        if self.status == CopyStatus.CANCELLED:
            return f"Cancelled after {self.elapsed_seconds:.1f}s"
        return f"Failed after {self.elapsed_seconds:.1f}s: {self.message}"
