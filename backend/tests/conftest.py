import os
from collections.abc import Generator

import pytest

# Tests run against the in-process store and limiter, never a real Redis.
os.environ["REDIS_URL"] = ""
os.environ.setdefault("APP_PROXY_SECRET", "test-proxy-secret")

from discount_issuer.core import metrics  # noqa: E402
from discount_issuer.core.kv_store import get_memory_store  # noqa: E402
from discount_issuer.core.rate_limit import get_rate_limiter  # noqa: E402


@pytest.fixture(autouse=True)
def _clear_shared_state() -> Generator[None, None, None]:
    # The in-memory store, limiter buckets and counters are process-global and can leak across tests.
    get_memory_store().clear()
    get_rate_limiter().reset()
    metrics.reset()
    yield
    get_memory_store().clear()
    get_rate_limiter().reset()
    metrics.reset()
