"""
Timeout and retry constants for zkstack-wizard.

Centralizes timeout values to ensure consistency across the codebase
and make tuning easier. Most of them are defaults for ``WizardConfig``.
"""

from __future__ import annotations

# =============================================================================
# Relational store
# =============================================================================

# Probe attempts while waiting for Postgres to accept connections
STORE_PROBE_ATTEMPTS = 30

# Delay between store probes
STORE_PROBE_INTERVAL_S = 0.5

# Connect timeout for a single store connection attempt
STORE_CONNECT_TIMEOUT_S = 2

# =============================================================================
# L1 RPC
# =============================================================================

# 100 probes every 200ms give the L1 node 20 seconds to come up
L1_PROBE_ATTEMPTS = 100

L1_PROBE_INTERVAL_S = 0.2

# Timeout for a single JSON-RPC request
L1_RPC_TIMEOUT_S = 5.0

# =============================================================================
# Subprocess Timeouts
# =============================================================================

# Default timeout for step hook commands (deployments can be slow)
HOOK_DEFAULT_TIMEOUT_S = 1800

# =============================================================================
# Telemetry
# =============================================================================

# Timeout for force_flush on the tracer provider
OTEL_FLUSH_TIMEOUT_MS = 5000
