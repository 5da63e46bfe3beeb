"""Health check stage: one GET against the deployed site."""

from __future__ import annotations

import time
from typing import Callable

import requests

from ..config import HealthConfig
from ..utils.logging import get_logger
from .base import Clock, HealthCheckResult, Stopwatch

logger = get_logger(__name__)


class HealthCheckStage:
    """Classifies the deployed site's response; never gates the run."""

    def __init__(
        self,
        health: HealthConfig,
        *,
        http_get: Callable[..., requests.Response] = requests.get,
        clock: Clock = time.perf_counter,
    ) -> None:
        self.health = health
        self.http_get = http_get
        self.clock = clock

    def run(self, url: str) -> HealthCheckResult:
        watch = Stopwatch(self.clock)

        def elapsed_ms() -> int:
            return int(watch.elapsed() * 1000)

        if not url:
            return HealthCheckResult(success=False, error="No server URL configured", response_time=0)

        try:
            # 3xx counts as up, so redirects are not followed; the body is never read
            response = self.http_get(url, timeout=self.health.timeout, allow_redirects=False, stream=True)
            response.close()
        except requests.exceptions.Timeout:
            return HealthCheckResult(success=False, error="Health check timeout", response_time=elapsed_ms())
        except requests.exceptions.RequestException as exc:
            return HealthCheckResult(
                success=False, error=str(exc) or "Health check failed", response_time=elapsed_ms()
            )

        response_time = elapsed_ms()
        status = response.status_code
        # requests bounds each socket read, not the whole exchange
        if response_time > self.health.timeout * 1000:
            return HealthCheckResult(
                success=False, status=status, error="Health check timeout", response_time=response_time
            )
        if 200 <= status < 400:
            return HealthCheckResult(success=True, status=status, response_time=response_time)
        return HealthCheckResult(success=False, status=status, error=f"HTTP {status}", response_time=response_time)
