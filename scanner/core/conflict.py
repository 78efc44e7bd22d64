"""
Résolveur de conflits

Quand l'API signale un scan en conflit, le résolveur décide de l'issue :
- Doublon exact d'un scan déjà confirmé : on accepte la version serveur
- Contenu divergent pour le même identifiant physique : résolution manuelle
- Conflit de nature inconnue : résolution manuelle

Aucune résolution n'est appliquée automatiquement aux cas manuels.
"""

from collections import deque
from datetime import datetime
from typing import Dict, Any, List, Optional

from .exceptions import ConflictError
from .models import ScanRecord, ScanStatus, Resolution, ConflictInfo, ConflictKind


# Statut local appliqué pour chaque résolution
RESOLUTION_STATUS = {
    Resolution.ACCEPT_SERVER: ScanStatus.CONFIRMED,
    Resolution.KEEP_LOCAL: ScanStatus.PENDING,
    Resolution.MANUAL: ScanStatus.CONFLICTED,
}


class ConflictResolver:
    """
    Politique de résolution des conflits signalés par le serveur

    Garde un journal borné des décisions pour le diagnostic.
    """

    def __init__(self, config, logger, journal_size: int = 200):
        """
        Initialise le résolveur

        Args:
            config: Instance de ScannerConfig
            logger: Instance de ScannerLogger
            journal_size: Nombre de décisions conservées en mémoire
        """
        self.config = config
        self.logger = logger.get_logger()
        self._journal = deque(maxlen=journal_size)

        self.logger.info("ConflictResolver initialisé")

    def resolve(self, record: ScanRecord, conflict_info: Optional[ConflictInfo]) -> Resolution:
        """
        Décide de l'issue d'un conflit signalé par le serveur

        Args:
            record: Enregistrement local en conflit
            conflict_info: Informations de conflit renvoyées par l'API

        Returns:
            Resolution: AcceptServer pour un doublon exact, Manual sinon
        """
        info = conflict_info or ConflictInfo()

        if info.kind == ConflictKind.DUPLICATE:
            resolution = Resolution.ACCEPT_SERVER
        else:
            resolution = Resolution.MANUAL

        self._record(record, info, resolution, automatic=True)

        if resolution == Resolution.MANUAL:
            self.logger.warning(
                f"Conflit de contenu pour le scan {record.id}: résolution manuelle requise"
                f" ({info.reason or info.kind.value})"
            )
        else:
            self.logger.info(f"Scan {record.id} déjà confirmé côté serveur (doublon)")

        return resolution

    def apply_manual(self, record: ScanRecord, resolution: Resolution) -> ScanStatus:
        """
        Valide une décision de l'opérateur sur un scan en conflit

        Args:
            record: Enregistrement en statut Conflicted
            resolution: AcceptServer ou KeepLocal

        Returns:
            ScanStatus: Statut à appliquer à l'enregistrement

        Raises:
            ConflictError: si l'enregistrement n'est pas en conflit ou si la
                décision n'est pas applicable
        """
        resolution = Resolution(resolution)

        if record.status != ScanStatus.CONFLICTED:
            raise ConflictError(
                f"Le scan {record.id} n'est pas en conflit (statut: {record.status.value})"
            )
        if resolution == Resolution.MANUAL:
            raise ConflictError("Une décision manuelle doit être AcceptServer ou KeepLocal")

        self._record(record, ConflictInfo(reason=record.last_error), resolution, automatic=False)
        self.logger.info(f"Conflit du scan {record.id} résolu manuellement: {resolution.value}")
        return RESOLUTION_STATUS[resolution]

    def status_for(self, resolution: Resolution) -> ScanStatus:
        return RESOLUTION_STATUS[Resolution(resolution)]

    def get_journal(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Retourne les décisions les plus récentes en premier"""
        return list(reversed(self._journal))[:limit]

    def _record(self, record: ScanRecord, info: ConflictInfo, resolution: Resolution, automatic: bool):
        self._journal.append({
            'record_id': record.id,
            'kind': info.kind.value,
            'reason': info.reason,
            'resolution': resolution.value,
            'automatic': automatic,
            'timestamp': datetime.now().isoformat()
        })
