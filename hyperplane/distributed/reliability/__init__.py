from .retry import (
    JitterStrategy as JitterStrategy,
    RetryConfig as RetryConfig,
    RetryExecutor as RetryExecutor,
    add_jitter as add_jitter,
    calculate_jittered_delay as calculate_jittered_delay,
)
from .bounded_cache import EpochCache as EpochCache
