"""
Modèle de données du moteur de synchronisation des scans

Ce module définit :
- Les enregistrements de scan (ScanRecord) et leurs statuts
- L'état de connectivité partagé par le processus
- Les résultats renvoyés par l'API distante et par le moteur
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional


class ScanStatus(str, Enum):
    """Énumération des statuts d'un enregistrement de scan"""
    PENDING = "Pending"
    SYNCING = "Syncing"
    CONFIRMED = "Confirmed"
    CONFLICTED = "Conflicted"
    FAILED = "Failed"


class ConnectivityState(str, Enum):
    """État réseau du processus"""
    ONLINE = "Online"
    OFFLINE = "Offline"


class Resolution(str, Enum):
    """Décision du résolveur de conflits"""
    ACCEPT_SERVER = "AcceptServer"
    KEEP_LOCAL = "KeepLocal"
    MANUAL = "Manual"


class ConflictKind(str, Enum):
    """Nature du conflit signalé par le serveur"""
    DUPLICATE = "duplicate"
    CONTENT = "content"
    UNKNOWN = "unknown"


class Outcome(str, Enum):
    """Résultat par enregistrement renvoyé par l'API d'ingestion"""
    CONFIRMED = "Confirmed"
    CONFLICT = "Conflict"
    REJECTED = "Rejected"


@dataclass
class ScanRecord:
    """
    Un événement de scan capturé localement

    L'identifiant est généré à la capture et sert de clé d'idempotence
    pour toutes les soumissions à l'API distante.
    """
    id: str
    content: str
    captured_at: str
    device_id: str = ""
    session_id: str = ""
    symbology: Optional[str] = None
    status: ScanStatus = ScanStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    seq: Optional[int] = None
    created_at: Optional[float] = None
    updated_at: Optional[float] = None
    confirmed_at: Optional[float] = None

    @property
    def payload(self) -> Dict[str, Any]:
        """Contenu décodé et métadonnées de capture"""
        payload = {
            'content': self.content,
            'capturedAt': self.captured_at,
            'deviceId': self.device_id,
            'sessionId': self.session_id,
        }
        if self.symbology:
            payload['symbology'] = self.symbology
        return payload

    def to_submission(self) -> Dict[str, Any]:
        """Forme envoyée à POST /scans/batch"""
        return {
            'id': self.id,
            'payload': self.payload,
            'capturedAt': self.captured_at,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'payload': self.payload,
            'status': self.status.value,
            'attempts': self.attempts,
            'last_error': self.last_error,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'confirmed_at': _iso(self.confirmed_at),
        }


@dataclass
class ConflictInfo:
    """Informations de conflit fournies par le serveur"""
    kind: ConflictKind = ConflictKind.UNKNOWN
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, item: Dict[str, Any]) -> 'ConflictInfo':
        raw = item.get('conflict') or {}
        if not isinstance(raw, dict):
            raw = {}

        try:
            kind = ConflictKind(str(raw.get('kind', '')).lower())
        except ValueError:
            kind = ConflictKind.UNKNOWN

        details = {k: v for k, v in raw.items() if k != 'kind'}
        return cls(kind=kind, reason=item.get('reason'), details=details)


@dataclass
class RecordOutcome:
    """Résultat d'ingestion pour un enregistrement"""
    id: str
    outcome: Outcome
    reason: Optional[str] = None
    conflict: Optional[ConflictInfo] = None


@dataclass
class BatchResult:
    """Réponse de l'API pour un lot, indexée par identifiant"""
    outcomes: Dict[str, RecordOutcome] = field(default_factory=dict)
    unknown_ids: List[str] = field(default_factory=list)
    status_code: Optional[int] = None

    def get(self, record_id: str) -> Optional[RecordOutcome]:
        return self.outcomes.get(record_id)


@dataclass
class SyncReport:
    """Bilan d'une tentative de synchronisation"""
    attempted: bool = False
    skipped_reason: Optional[str] = None
    batch_size: int = 0
    confirmed: int = 0
    conflicted: int = 0
    failed: int = 0
    requeued: int = 0
    retry_in: Optional[float] = None
    error: Optional[str] = None
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'attempted': self.attempted,
            'skipped_reason': self.skipped_reason,
            'batch_size': self.batch_size,
            'confirmed': self.confirmed,
            'conflicted': self.conflicted,
            'failed': self.failed,
            'requeued': self.requeued,
            'retry_in': self.retry_in,
            'error': self.error,
            'started_at': self.started_at,
        }


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, timezone.utc).isoformat()
