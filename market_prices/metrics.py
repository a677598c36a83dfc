"""
Market Price Metrics - Statistics and Monitoring

Tracks every waterfall operation:
- Per-provider attempt, success, failure and rate-limit counts
- Per-operation totals and fallback usage
- In-memory ring buffer of recent calls
- Structured JSON logging for ops visibility
"""

import logging
import json
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Optional, List, Dict, Any, Deque
from enum import Enum

from .interfaces import OperationType

logger = logging.getLogger(__name__)


class CallResult(Enum):
    """Result of a waterfall operation."""
    SUCCESS = "success"
    FALLBACK = "fallback"          # Succeeded with a lower-priority provider
    EMPTY = "empty"                # No provider failed, none had data
    FAILURE = "failure"
    RATE_LIMITED = "rate_limited"  # Every provider was rate limited


@dataclass
class CallRecord:
    """Record of a single waterfall operation."""
    timestamp: datetime
    operation: OperationType
    symbol: str
    providers_tried: List[str]
    provider_used: Optional[str]
    result: CallResult
    latency_ms: float
    fallback_used: bool
    rate_limited_providers: List[str]
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'timestamp': self.timestamp.isoformat(),
            'operation': self.operation.value,
            'symbol': self.symbol,
            'providers_tried': self.providers_tried,
            'provider_used': self.provider_used,
            'result': self.result.value,
            'latency_ms': round(self.latency_ms, 2),
            'fallback_used': self.fallback_used,
            'rate_limited_providers': self.rate_limited_providers,
            'error_type': self.error_type,
            'error_message': self.error_message,
        }


@dataclass
class ProviderMetrics:
    """Aggregated metrics for a single provider."""
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rate_limited_calls: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Calculate success rate as percentage."""
        if self.total_calls == 0:
            return 0.0
        return (self.successful_calls / self.total_calls) * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_calls': self.total_calls,
            'successful_calls': self.successful_calls,
            'failed_calls': self.failed_calls,
            'rate_limited_calls': self.rate_limited_calls,
            'success_rate': round(self.success_rate, 2),
            'last_error': self.last_error,
            'last_error_time': self.last_error_time.isoformat() if self.last_error_time else None,
            'last_success_time': self.last_success_time.isoformat() if self.last_success_time else None,
        }


@dataclass
class OperationMetrics:
    """Aggregated metrics for a single operation type."""
    total_calls: int = 0
    fallback_used: int = 0
    failures: int = 0

    @property
    def fallback_rate(self) -> float:
        if self.total_calls == 0:
            return 0.0
        return (self.fallback_used / self.total_calls) * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_calls': self.total_calls,
            'fallback_used': self.fallback_used,
            'fallback_rate': round(self.fallback_rate, 2),
            'failures': self.failures,
        }


class MetricsCollector:
    """
    Collects and aggregates metrics for waterfall operations.

    Usage:
        from market_prices.metrics import metrics_collector

        metrics_collector.record_call(
            operation=OperationType.QUOTE,
            symbol="AAPL",
            providers_tried=["yahoo_finance"],
            provider_used="yahoo_finance",
            latency_ms=150.5,
        )

        stats = metrics_collector.get_stats()
    """

    _instance = None
    _lock = Lock()

    MAX_RECORDS = 10000  # Max records in ring buffer
    LOG_TO_JSON = True

    def __new__(cls):
        """Singleton pattern."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if getattr(self, '_initialized', False):
            return

        self._records: Deque[CallRecord] = deque(maxlen=self.MAX_RECORDS)
        self._provider_metrics: Dict[str, ProviderMetrics] = {}
        self._operation_metrics: Dict[OperationType, OperationMetrics] = {
            op: OperationMetrics() for op in OperationType
        }
        self._start_time: datetime = datetime.now()
        self._lock = Lock()

        self._initialized = True
        logger.debug("[Metrics] MetricsCollector initialized")

    def record_call(
        self,
        operation: OperationType,
        symbol: str,
        providers_tried: List[str],
        provider_used: Optional[str],
        latency_ms: float,
        success: bool = True,
        rate_limited_providers: Optional[List[str]] = None,
        error_type: Optional[str] = None,
        error_message: Optional[str] = None,
        failed_providers: Optional[List[str]] = None,
        providers_succeeded: Optional[List[str]] = None,
    ) -> CallRecord:
        """
        Record a waterfall operation.

        Args:
            operation: Operation performed
            symbol: Symbol (or search keywords)
            providers_tried: Providers attempted, in order
            provider_used: Provider that returned data (None if none did)
            latency_ms: Total wall time, including pacing delays
            success: False when the operation raised
            rate_limited_providers: Providers that failed with a rate limit
            error_type: Exception class name if failed
            error_message: Error message if failed
            failed_providers: Providers that failed for any other reason
            providers_succeeded: Providers whose call returned without raising,
                with or without data (defaults to provider_used)

        A tried provider in none of the outcome lists (the call was aborted on
        malformed input) is not counted against that provider.
        """
        rate_limited_providers = rate_limited_providers or []
        failed_providers = failed_providers or []
        if providers_succeeded is None:
            providers_succeeded = [provider_used] if provider_used else []
        fallback_used = provider_used is not None and bool(providers_tried) and providers_tried[0] != provider_used

        if not success and providers_tried and len(rate_limited_providers) == len(providers_tried):
            result = CallResult.RATE_LIMITED
        elif not success:
            result = CallResult.FAILURE
        elif provider_used is None:
            result = CallResult.EMPTY
        elif fallback_used:
            result = CallResult.FALLBACK
        else:
            result = CallResult.SUCCESS

        record = CallRecord(
            timestamp=datetime.now(),
            operation=operation,
            symbol=symbol.upper(),
            providers_tried=list(providers_tried),
            provider_used=provider_used,
            result=result,
            latency_ms=latency_ms,
            fallback_used=fallback_used,
            rate_limited_providers=list(rate_limited_providers),
            error_type=error_type,
            error_message=error_message,
        )

        now = datetime.now()
        with self._lock:
            self._records.append(record)

            op_metrics = self._operation_metrics[operation]
            op_metrics.total_calls += 1
            if fallback_used:
                op_metrics.fallback_used += 1
            if not success:
                op_metrics.failures += 1

            for provider in providers_tried:
                if provider in providers_succeeded:
                    pm = self._provider_metrics.setdefault(provider, ProviderMetrics())
                    pm.total_calls += 1
                    pm.successful_calls += 1
                    pm.last_success_time = now
                elif provider in rate_limited_providers:
                    pm = self._provider_metrics.setdefault(provider, ProviderMetrics())
                    pm.total_calls += 1
                    pm.failed_calls += 1
                    pm.rate_limited_calls += 1
                    pm.last_error = 'rate_limited'
                    pm.last_error_time = now
                elif provider in failed_providers:
                    pm = self._provider_metrics.setdefault(provider, ProviderMetrics())
                    pm.total_calls += 1
                    pm.failed_calls += 1
                    pm.last_error_time = now

        if self.LOG_TO_JSON:
            self._log_record(record)

        return record

    def record_provider_failure(self, provider: str, error: Exception) -> None:
        """Keep the details of a non-rate-limit failure; counting happens in record_call."""
        with self._lock:
            pm = self._provider_metrics.setdefault(provider, ProviderMetrics())
            pm.last_error = f"{type(error).__name__}: {error}"[:500]
            pm.last_error_time = datetime.now()

    def _log_record(self, record: CallRecord) -> None:
        """Log a single record as structured JSON."""
        log_data = {
            'event': 'market_price_call',
            **record.to_dict()
        }

        if record.result in (CallResult.FAILURE, CallResult.RATE_LIMITED):
            logger.info(f"[Metrics] {json.dumps(log_data)}")
        else:
            logger.debug(f"[Metrics] {json.dumps(log_data)}")

    def get_stats(self) -> Dict[str, Any]:
        """Get comprehensive statistics."""
        with self._lock:
            total_calls = sum(m.total_calls for m in self._operation_metrics.values())
            total_failures = sum(m.failures for m in self._operation_metrics.values())
            total_fallbacks = sum(m.fallback_used for m in self._operation_metrics.values())

            recent_errors = [
                r.to_dict() for r in self._records
                if r.result in (CallResult.FAILURE, CallResult.RATE_LIMITED)
            ][-50:]

            return {
                'uptime': {
                    'start_time': self._start_time.isoformat(),
                    'uptime_seconds': (datetime.now() - self._start_time).total_seconds(),
                },
                'totals': {
                    'total_calls': total_calls,
                    'failures': total_failures,
                    'failure_rate': round(total_failures / total_calls * 100, 2) if total_calls > 0 else 0,
                    'fallback_used': total_fallbacks,
                    'fallback_rate': round(total_fallbacks / total_calls * 100, 2) if total_calls > 0 else 0,
                },
                'by_provider': {
                    name: pm.to_dict() for name, pm in self._provider_metrics.items()
                },
                'by_operation': {
                    op.value: om.to_dict() for op, om in self._operation_metrics.items()
                },
                'recent_errors': recent_errors,
                'buffer_size': len(self._records),
            }

    def get_provider_health(self, provider_name: str) -> Dict[str, Any]:
        """Get health status for a specific provider."""
        with self._lock:
            if provider_name not in self._provider_metrics:
                return {'status': 'unknown', 'message': 'No data for this provider'}

            pm = self._provider_metrics[provider_name]

            if pm.total_calls == 0:
                status = 'unknown'
            elif pm.success_rate >= 95:
                status = 'healthy'
            elif pm.success_rate >= 80:
                status = 'degraded'
            else:
                status = 'unhealthy'

            return {
                'status': status,
                'metrics': pm.to_dict(),
            }

    def get_recent_calls(
        self,
        limit: int = 100,
        operation: Optional[OperationType] = None,
        provider: Optional[str] = None,
        symbol: Optional[str] = None,
        errors_only: bool = False,
    ) -> List[Dict[str, Any]]:
        """Get recent call records with optional filtering."""
        with self._lock:
            records = list(self._records)

        if operation:
            records = [r for r in records if r.operation == operation]
        if provider:
            records = [r for r in records if provider in r.providers_tried]
        if symbol:
            records = [r for r in records if r.symbol == symbol.upper()]
        if errors_only:
            records = [r for r in records if r.result in (CallResult.FAILURE, CallResult.RATE_LIMITED)]

        return [r.to_dict() for r in records[-limit:]]

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._records.clear()
            self._provider_metrics.clear()
            for op in OperationType:
                self._operation_metrics[op] = OperationMetrics()
            self._start_time = datetime.now()
            logger.debug("[Metrics] Metrics reset")


# Singleton instance
metrics_collector = MetricsCollector()
