"""
Monitoring, logging and health checks.

Provides:
- Structured JSON logging (LOG_FORMAT=json)
- Request timing, correlation IDs and per-endpoint metrics
- Deep health check over the JSON store and the AI configuration
- Readiness and liveness probes
"""

import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from flask import Flask, current_app, g, has_request_context, jsonify, request

logger = logging.getLogger(__name__)

APP_VERSION = '1.0.0'


# ---------------------------------------------------------------------------
# Structured JSON logging
# ---------------------------------------------------------------------------

class JsonLogFormatter(logging.Formatter):
    """One JSON object per log line, with the request correlation ID when there is one."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        correlation_id = getattr(record, 'correlation_id', None)
        if not correlation_id and has_request_context():
            correlation_id = getattr(g, 'correlation_id', None)
        if correlation_id:
            log_entry['correlation_id'] = correlation_id

        if record.exc_info and record.exc_info[0]:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
            }

        return json.dumps(log_entry)


def configure_logging(app: Flask):
    """Switch to JSON logs when LOG_FORMAT=json, otherwise keep Flask's text logs."""
    log_level = app.config.get('LOG_LEVEL', 'INFO').upper()
    level = getattr(logging, log_level, logging.INFO)

    if app.config.get('LOG_FORMAT', 'text').lower() == 'json':
        handler = logging.StreamHandler()
        handler.setFormatter(JsonLogFormatter())
        app.logger.handlers = [handler]
        logging.root.handlers = [handler]
        app.logger.setLevel(level)
        logging.root.setLevel(level)
        app.logger.info("Structured JSON logging configured")
    else:
        logging.basicConfig(level=level)
        app.logger.info("Using default text logging (set LOG_FORMAT=json for structured logs)")


# ---------------------------------------------------------------------------
# Request metrics
# ---------------------------------------------------------------------------

class RequestMetrics:
    """Collects per-request metrics for the monitoring endpoint."""

    MAX_SAMPLES = 1000

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self):
        self.total_requests = 0
        self.total_errors = 0
        self.endpoint_counts: Dict[str, int] = {}
        self.endpoint_latencies: Dict[str, List[float]] = {}
        self.status_counts: Dict[int, int] = {}
        self._start_time = time.time()

    def record(self, endpoint: str, status_code: int, latency_ms: float):
        with self._lock:
            self.total_requests += 1
            if status_code >= 500:
                self.total_errors += 1

            self.endpoint_counts[endpoint] = self.endpoint_counts.get(endpoint, 0) + 1
            self.status_counts[status_code] = self.status_counts.get(status_code, 0) + 1

            latencies = self.endpoint_latencies.setdefault(endpoint, [])
            latencies.append(latency_ms)
            if len(latencies) > self.MAX_SAMPLES:
                self.endpoint_latencies[endpoint] = latencies[-self.MAX_SAMPLES:]

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            uptime = time.time() - self._start_time
            avg_latencies = {
                endpoint: {
                    'avg_ms': round(sum(latencies) / len(latencies), 2),
                    'max_ms': round(max(latencies), 2),
                    'min_ms': round(min(latencies), 2),
                    'count': len(latencies),
                }
                for endpoint, latencies in self.endpoint_latencies.items() if latencies
            }
            return {
                'uptime_seconds': round(uptime, 0),
                'total_requests': self.total_requests,
                'total_errors': self.total_errors,
                'error_rate': round(self.total_errors / max(self.total_requests, 1) * 100, 2),
                'requests_per_second': round(self.total_requests / max(uptime, 1), 2),
                'status_codes': dict(self.status_counts),
                'top_endpoints': dict(sorted(self.endpoint_counts.items(), key=lambda x: x[1], reverse=True)[:10]),
                'latencies': avg_latencies,
            }


_metrics = RequestMetrics()


def get_request_metrics() -> RequestMetrics:
    return _metrics


def register_request_metrics(app: Flask):
    """Register request timing and metrics middleware."""

    @app.before_request
    def start_timer():
        g.request_start_time = time.time()
        g.correlation_id = request.headers.get(
            'X-Correlation-ID',
            request.headers.get('X-Request-ID', f"req-{uuid.uuid4().hex[:12]}")
        )

    @app.after_request
    def record_metrics(response):
        start = getattr(g, 'request_start_time', None)
        if start:
            latency_ms = (time.time() - start) * 1000
            _metrics.record(request.endpoint or request.path, response.status_code, latency_ms)

            correlation_id = getattr(g, 'correlation_id', None)
            if correlation_id:
                response.headers['X-Correlation-ID'] = correlation_id
            response.headers['X-Response-Time'] = f"{latency_ms:.2f}ms"

        return response

    logger.info("Request metrics middleware registered")


# ---------------------------------------------------------------------------
# Health checks
# ---------------------------------------------------------------------------

def check_store_health() -> Dict[str, Any]:
    """Check that the JSON data file can be read."""
    from fmea_app.database import JsonStore

    start = time.time()
    try:
        data = JsonStore(current_app.config['DATA_PATH']).read()
        return {
            'status': 'healthy',
            'latency_ms': round((time.time() - start) * 1000, 2),
            'type': 'json',
            'projects': len(data['projects']),
        }
    except Exception as e:
        logger.warning(f"Data store health check failed: {e}")
        return {
            'status': 'unhealthy',
            'error': str(e),
            'latency_ms': round((time.time() - start) * 1000, 2),
        }


def check_llm_health() -> Dict[str, Any]:
    """Report whether the Gemini API key is configured. No network call is made."""
    if not current_app.config.get('GOOGLE_API_KEY'):
        return {'status': 'not_configured', 'message': 'No API key set'}
    return {'status': 'configured', 'provider': 'google_generativeai'}


def run_deep_health_check() -> Dict[str, Any]:
    """Run all health checks and return aggregate status."""
    checks = {
        'store': check_store_health(),
        'llm': check_llm_health(),
    }

    statuses = [c['status'] for c in checks.values()]
    if all(s in ('healthy', 'configured', 'not_configured') for s in statuses):
        overall = 'healthy'
    elif any(s == 'unhealthy' for s in statuses):
        overall = 'unhealthy'
    else:
        overall = 'degraded'

    return {
        'status': overall,
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'version': APP_VERSION,
        'checks': checks,
    }


def register_monitoring(app: Flask):
    """Register all monitoring endpoints and middleware."""

    configure_logging(app)
    register_request_metrics(app)

    @app.route('/health/deep', methods=['GET'])
    def deep_health_check():
        """Deep health check verifying dependent resources."""
        result = run_deep_health_check()
        status_code = 200 if result['status'] == 'healthy' else 503
        return jsonify(result), status_code

    @app.route('/health/ready', methods=['GET'])
    def readiness_probe():
        """Readiness probe - can the data file be served?"""
        if check_store_health()['status'] == 'unhealthy':
            return jsonify({'ready': False, 'reason': 'data store unavailable'}), 503
        return jsonify({'ready': True}), 200

    @app.route('/health/live', methods=['GET'])
    def liveness_probe():
        """Liveness probe - is the process alive?"""
        return jsonify({'alive': True}), 200

    @app.route('/api/monitoring/metrics', methods=['GET'])
    def get_metrics():
        return jsonify(_metrics.get_summary())

    logger.info("Monitoring endpoints registered: /health/deep, /health/ready, /health/live, /api/monitoring/metrics")
