"""
In-process metrics for fulfillment sagas
"""

from collections import Counter
from typing import Any

from orderflow.types import SagaState


class FulfillmentMetrics:
    """Saga outcome counters kept in memory, per coordinator process"""

    def __init__(self):
        self.total_executed = 0
        self.total_completed = 0
        self.total_compensated = 0
        self.compensation_failures = 0
        self.failures_by_code: Counter[str] = Counter()
        self._total_duration = 0.0

    def record_execution(
        self, state: SagaState, duration: float, error_code: str | None = None
    ) -> None:
        """Record a finished saga"""
        self.total_executed += 1
        self._total_duration += duration
        if state == SagaState.COMPLETED:
            self.total_completed += 1
        else:
            self.failures_by_code[error_code or "UNKNOWN"] += 1

    def record_compensation(self, failures: int = 0) -> None:
        """Record an unwound compensation stack and how many actions failed"""
        self.total_compensated += 1
        self.compensation_failures += failures

    @property
    def total_failed(self) -> int:
        return self.total_executed - self.total_completed

    def get_metrics(self) -> dict[str, Any]:
        executed = self.total_executed
        success_rate = self.total_completed / executed * 100 if executed else 0

        return {
            "total_executed": executed,
            "total_completed": self.total_completed,
            "total_failed": self.total_failed,
            "total_compensated": self.total_compensated,
            "compensation_failures": self.compensation_failures,
            "failures_by_code": dict(self.failures_by_code),
            "average_execution_time": self._total_duration / executed if executed else 0.0,
            "success_rate": f"{success_rate:.2f}%",
        }
