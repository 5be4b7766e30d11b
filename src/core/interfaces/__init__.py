"""Contratos del Core hacia el exterior.

- `transport.HTTPExecutor`: cómo el cliente habla HTTP con la parte remota.
  `adapters.http_client.HttpxExecutor` es la implementación por defecto; los
  tests la sustituyen por un `httpx.MockTransport`.
"""
