import asyncio


class HealthGauge:
    """
    Readiness signal driven by upstream faults.

    Every time the session store, the audit log or the identity provider is
    unreachable the gauge is bumped with `womp`. A background task calls `tick`
    periodically to let the value decay. While the value stays above the
    threshold, `/internal/ready` reports 503 so that a load balancer can route
    around an instance whose dependencies are failing in bursts.
    """

    def __init__(self, value: int = 0, health_threshold: int = 100) -> None:
        self._value = value
        self._health_threshold = health_threshold
        self._lock = asyncio.Lock()

    @property
    def value(self) -> int:
        return self._value

    async def womp(self, d=1) -> int:
        async with self._lock:
            self._value += int(d)
            return self._value

    async def tick(self, d=1) -> None:
        async with self._lock:
            self._value = max(0, self._value - int(d))

    async def is_healthy(self) -> bool:
        async with self._lock:
            return self._value <= self._health_threshold
