import os
from dataclasses import dataclass

from callbrain.utils import env_float_tuple, env_optional_int

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAYS = (1.0, 5.0, 15.0)

# -------------------------------------------------------------- #
# Retry Policy
# -------------------------------------------------------------- #


@dataclass(frozen=True)
class RetryPolicy:
    """
    Per-stage retry budget with a fixed backoff schedule.

    Attributes:
        max_attempts: Attempts per stage before the recording fails
        delays: Seconds to wait after the 1st, 2nd, ... failed attempt; the
            last value repeats
        storage_max_attempts: Attempts for a storage call, None for unlimited
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS
    storage_max_attempts: int | None = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.storage_max_attempts is not None and self.storage_max_attempts < 1:
            raise ValueError("storage_max_attempts must be at least 1")
        if any(delay < 0 for delay in self.delays):
            raise ValueError("delays cannot be negative")

    def delay_for(self, failed_attempts: int) -> float:
        """Seconds to wait after ``failed_attempts`` failures."""
        if not self.delays or failed_attempts < 1:
            return 0.0
        return self.delays[min(failed_attempts, len(self.delays)) - 1]

    @classmethod
    def from_env(cls) -> "RetryPolicy":
        """Build a policy from PIPELINE_MAX_ATTEMPTS, PIPELINE_RETRY_DELAYS and PIPELINE_STORAGE_MAX_ATTEMPTS."""
        return cls(
            max_attempts=int(os.getenv("PIPELINE_MAX_ATTEMPTS", str(DEFAULT_MAX_ATTEMPTS))),
            delays=env_float_tuple("PIPELINE_RETRY_DELAYS", DEFAULT_RETRY_DELAYS),
            storage_max_attempts=env_optional_int("PIPELINE_STORAGE_MAX_ATTEMPTS"),
        )
