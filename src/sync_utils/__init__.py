"""
Infrastructure shared by the standby sync engine

Provides:
- logging: structured JSON/console logging setup
- tracing: OpenTelemetry spans around database work
- db_pool: thread-safe PostgreSQL connection pooling
- metrics: Prometheus metrics publishing
- retry: backoff for transient database failures
- vault_client: HashiCorp Vault lookup of connection strings
"""

__version__ = "1.0.0"
__all__ = ["logging", "tracing", "db_pool", "metrics", "retry", "vault_client"]
