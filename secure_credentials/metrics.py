"""
Prometheus metrics for secure_credentials.

Provides observability metrics for monitoring:
- HTTP requests and performance
- Login outcomes
- Challenge state transitions
- Device registration and removal
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ============================================================================
# Application Info
# ============================================================================

app_info = Info('secure_credentials', 'Secure credentials service info')

# ============================================================================
# HTTP Metrics
# ============================================================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0)
)

http_requests_in_progress = Gauge(
    'http_requests_in_progress',
    'Number of HTTP requests currently being processed',
    ['method', 'endpoint']
)

# ============================================================================
# Authentication Metrics
# ============================================================================

auth_login_attempts_total = Counter(
    'auth_login_attempts_total',
    'Total login attempts',
    ['status']  # success, invalid_credentials, two_factor_required, rate_limited
)

auth_sessions_issued_total = Counter(
    'auth_sessions_issued_total',
    'Total sessions issued',
    ['mfa_verified']
)

# ============================================================================
# Two-Factor Protocol Metrics
# ============================================================================

challenge_created_total = Counter(
    'challenge_created_total',
    'Total challenges created',
    ['purpose', 'mechanism']
)

challenge_transitions_total = Counter(
    'challenge_transitions_total',
    'Challenge status transitions',
    ['to_status', 'outcome']  # outcome: applied, lost_race
)

device_operations_total = Counter(
    'device_operations_total',
    'Device registry operations',
    ['operation', 'status']  # operation: begin, complete, remove, reset
)
