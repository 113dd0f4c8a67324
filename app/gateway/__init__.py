"""AI Provider Gateway.

Dispatches a uniform "send this message" request to one of nine chat
vendors and returns one normalized result:
  - Credential Vault (app.core.encryption)
  - Vendor-Specific Adapters over a unified HTTP transport
  - Provider Registry
  - Sliding-window Rate Limiter (client address + session)
  - Context Builder
  - Streaming Relay (SSE)
  - Gateway orchestrator with single-hop fallback
  - Model discovery cache
"""
