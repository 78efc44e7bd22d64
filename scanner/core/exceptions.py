"""
Taxonomie des erreurs du scanner

- CaptureError : saisie invalide, locale, signalée immédiatement à l'opérateur
- NetworkError : transitoire, absorbée par la boucle de nouvelles tentatives
- ServerRejection : refus définitif du serveur, l'enregistrement passe en Failed
- ConflictError : opération de résolution de conflit invalide
"""


class ScannerError(Exception):
    """Erreur de base du scanner"""


class CaptureError(ScannerError):
    """Résultat de décodage invalide refusé par le pipeline de capture"""

    INVALID_PAYLOAD = "InvalidPayload"

    def __init__(self, message: str, code: str = INVALID_PAYLOAD):
        super().__init__(message)
        self.code = code
        self.message = message


class NetworkError(ScannerError):
    """Échec réseau, timeout ou réponse non-2xx pour un lot entier"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class ServerRejection(ScannerError):
    """Rejet non récupérable d'un enregistrement par le serveur"""

    def __init__(self, record_id: str, reason: str):
        super().__init__(f"Enregistrement {record_id} rejeté: {reason}")
        self.record_id = record_id
        self.reason = reason


class ConflictError(ScannerError):
    """Opération de résolution de conflit impossible"""


class InvalidTransitionError(ScannerError):
    """Action opérateur incompatible avec le statut courant de l'enregistrement"""


class DuplicateRecordError(ScannerError):
    """Un enregistrement portant le même identifiant existe déjà"""

    def __init__(self, record_id: str):
        super().__init__(f"Enregistrement déjà présent: {record_id}")
        self.record_id = record_id


class RecordNotFoundError(ScannerError):
    """Identifiant d'enregistrement inconnu du stockage local"""

    def __init__(self, record_id: str):
        super().__init__(f"Enregistrement introuvable: {record_id}")
        self.record_id = record_id


class StoreClosedError(ScannerError):
    """Le stockage local est fermé (arrêt en cours)"""

    def __init__(self, db_path: str):
        super().__init__(f"Stockage fermé: {db_path}")
        self.db_path = db_path
