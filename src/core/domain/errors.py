"""Taxonomía de errores del cliente OCPI.

Todos se convierten en un `ResponseEnvelope` de fallo (status -1) en el borde
de cada llamada; solo `DiscoveryError` sale de `VersionRegistry` hacia quien
lo invoque directamente.
"""

from __future__ import annotations


class OCPIClientError(Exception):
    """Base de los errores del cliente."""


class DiscoveryError(OCPIClientError):
    """La parte remota no respondió o devolvió versiones/endpoints inválidos."""


class TransportError(OCPIClientError):
    """Fallo de red, TLS o timeout."""


class ProtocolError(OCPIClientError):
    """El cuerpo devuelto no es un JSON OCPI válido."""
