"""
Pipeline de capture des scans

Ce module transforme un résultat de décodage brut en enregistrement de scan
validé, puis l'ajoute au stockage local :
- Validation du contenu décodé
- Génération de l'identifiant (clé d'idempotence)
- Horodatage de la capture
- Un seul ajout au stockage par capture réussie
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Union

from .exceptions import CaptureError
from .models import ScanRecord, ScanStatus


# Caractères de contrôle interdits dans un contenu décodé.
# EOT, GS et RS restent permis : séparateurs GS1 (FNC1) et ISO 15434.
_CONTROL_CHARS = re.compile(r'[\x00-\x03\x05-\x1c\x1f\x7f]')
# str.strip() retirerait aussi GS et RS en bordure
_EDGE_WHITESPACE = ' \t\r\n\x0b\x0c'
_SYMBOLOGY = re.compile(r'^[A-Za-z0-9_\-]{1,32}$')

_CONTENT_KEYS = ('content', 'text', 'code')


class CapturePipeline:
    """
    Transforme les résultats de décodage en ScanRecord durables

    Toute entrée invalide est signalée à l'appelant par une CaptureError,
    jamais ignorée silencieusement.
    """

    def __init__(self, config, logger, store, session_id: Optional[str] = None):
        """
        Initialise le pipeline de capture

        Args:
            config: Instance de ScannerConfig
            logger: Instance de ScannerLogger
            store: Instance de ScanRecordStore
            session_id: Identifiant de session (généré si absent)
        """
        self.config = config
        self.logger = logger.get_logger()
        self.store = store

        capture_config = config.get_capture_config()
        self.max_content_length = capture_config['max_content_length']
        self.device_id = capture_config['device_id']
        self.session_id = session_id or uuid.uuid4().hex

        # Statistiques de capture
        self.captured_count = 0
        self.rejected_count = 0
        self.last_capture = None

        self.logger.info("CapturePipeline initialisé")
        self.logger.info(f"Appareil: {self.device_id}, session: {self.session_id}")

    def capture(self, raw_decode: Union[str, Dict[str, Any]]) -> ScanRecord:
        """
        Valide un résultat de décodage et l'ajoute au stockage

        Args:
            raw_decode: Contenu décodé (str) ou dictionnaire avec 'content'
                et éventuellement 'symbology' et 'device_id'

        Returns:
            ScanRecord: Enregistrement créé, en statut Pending

        Raises:
            CaptureError: si le contenu est vide ou mal formé
        """
        try:
            content, symbology, device_id = self._parse(raw_decode)
        except CaptureError as e:
            self.rejected_count += 1
            self.logger.warning(f"Capture refusée: {e.message}")
            raise

        record = ScanRecord(
            id=str(uuid.uuid4()),
            content=content,
            captured_at=datetime.now(timezone.utc).isoformat(),
            device_id=device_id,
            session_id=self.session_id,
            symbology=symbology,
            status=ScanStatus.PENDING,
        )

        self.store.append(record)

        self.captured_count += 1
        self.last_capture = datetime.now()
        self.logger.info(f"Scan capturé: {record.id} ({len(content)} caractères)")
        return record

    def _parse(self, raw_decode):
        """
        Extrait et valide le contenu, la symbologie et l'appareil

        Returns:
            tuple: (content, symbology, device_id)
        """
        symbology = None
        device_id = self.device_id

        if isinstance(raw_decode, dict):
            content = None
            for key in _CONTENT_KEYS:
                if key in raw_decode:
                    content = raw_decode[key]
                    break
            symbology = raw_decode.get('symbology') or raw_decode.get('format')
            device_id = raw_decode.get('device_id') or raw_decode.get('deviceId') or device_id
        else:
            content = raw_decode

        if isinstance(content, bytes):
            try:
                content = content.decode('utf-8')
            except UnicodeDecodeError:
                raise CaptureError("Contenu décodé non UTF-8")

        if not isinstance(content, str):
            raise CaptureError("Contenu décodé absent ou de type invalide")

        content = content.strip(_EDGE_WHITESPACE)
        if not content:
            raise CaptureError("Contenu décodé vide")

        if len(content) > self.max_content_length:
            raise CaptureError(
                f"Contenu décodé trop long ({len(content)} > {self.max_content_length})"
            )

        if _CONTROL_CHARS.search(content):
            raise CaptureError("Contenu décodé contenant des caractères de contrôle")

        if symbology is not None:
            if not isinstance(symbology, str) or not _SYMBOLOGY.match(symbology):
                raise CaptureError(f"Symbologie invalide: {symbology!r}")

        if not isinstance(device_id, str) or not device_id.strip():
            raise CaptureError("Identifiant d'appareil invalide")

        return content, symbology, device_id.strip()

    def get_stats(self) -> Dict[str, Any]:
        """
        Retourne les statistiques de capture

        Returns:
            dict: Statistiques de capture
        """
        return {
            'captured': self.captured_count,
            'rejected': self.rejected_count,
            'last_capture': self.last_capture.isoformat() if self.last_capture else None,
            'device_id': self.device_id,
            'session_id': self.session_id
        }
