"""
Gemini forwarding proxy.

This package contains:
- settings: environment configuration and the per-request ProxyConfig
- logging_config / log_sanitizer: shared logging setup and redaction
- auth: access-code / caller-key authentication
- request_body, payload: single-read body handling and field stripping
- endpoint: upstream key, base URL and path resolution
- upstream: outbound call under a deadline and response relay
- api: route handlers
- routes: FastAPI app factory
"""
