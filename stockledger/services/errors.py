"""
Erreurs métier du coeur stock.

Le *type* d'erreur est conservé de bout en bout : l'appelant (API) le
traduit en code HTTP via `status_code`.
"""


class LedgerError(Exception):
    status_code = 500
    kind = "internal_error"


class NotFoundError(LedgerError):
    status_code = 404
    kind = "not_found"


class InvalidArgumentError(LedgerError, ValueError):
    status_code = 400
    kind = "invalid_argument"


class InvalidStateError(LedgerError):
    status_code = 409
    kind = "invalid_state"


class ForbiddenError(LedgerError):
    status_code = 403
    kind = "forbidden"


class TransientStorageError(LedgerError):
    """Lock timeout / perte de connexion : rejouer l'opération entière."""

    status_code = 503
    kind = "transient_storage"
