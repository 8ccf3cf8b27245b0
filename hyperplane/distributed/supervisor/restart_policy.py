from dataclasses import dataclass

from hyperplane.distributed.reliability import JitterStrategy, calculate_jittered_delay


@dataclass(slots=True)
class RestartPolicy:
    """
    Bounded restart policy for faulted workloads. ``attempt`` counts
    restarts already made for the current epoch.

    The budget covers crash loops, not the whole life of a session: a
    workload that stays up for ``stable_after`` seconds has its attempt
    count reset to zero.
    """
    max_restarts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    jitter: JitterStrategy = JitterStrategy.EQUAL
    stable_after: float = 60.0

    def should_restart(self, attempt: int) -> bool:
        return attempt < self.max_restarts

    def delay(self, attempt: int) -> float:
        return calculate_jittered_delay(
            attempt,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter=self.jitter,
        )

    def is_stable(self, uptime: float) -> bool:
        return uptime >= self.stable_after
