from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str) -> None:
    with _lock:
        _metrics[key] += 1


def record_code_issued() -> None:
    _inc("discount_codes_issued")


def record_cache_hit() -> None:
    _inc("discount_cache_hits")


def record_rate_limited() -> None:
    _inc("discount_rate_limited")


def record_provisioning_failure() -> None:
    _inc("discount_provisioning_failures")


def record_preview_code() -> None:
    _inc("discount_preview_codes")


def record_bot_decoy() -> None:
    _inc("discount_bot_decoys")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
