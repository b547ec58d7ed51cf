from __future__ import annotations
"""forwarder/core/errors.py
~~~~~~~~~~~~~~~~~~~~~~~~~~
Taxonomie d'erreurs du forwarder.
"""


class ForwarderError(Exception):
    """Base de toutes les erreurs applicatives."""


class ConfigError(ForwarderError):
    """Configuration invalide (fichier, connecteur, variable d'env manquante)."""


class StoreError(ForwarderError):
    """Persistance indisponible ou corrompue : fatal pour le cycle courant."""


class UpstreamError(ForwarderError):
    """Échec de récupération des problèmes côté Dynatrace."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
