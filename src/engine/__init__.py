"""Check execution — timeout guard, retry, inversion, aggregation, history."""

from .aggregator import ScanStatus, ScanSummary, aggregate, summarize
from .executor import CheckOptions, ExecutionEngine
from .inversion import apply_inversion, invert_status
from .results import ResultStore
from .retry import RetryPolicy, run_with_retry
from .timeout import TimeoutGuard
