"""
Stockage durable des enregistrements de scan

Ce module gère :
- L'ajout atomique des scans capturés (écriture puis acquittement)
- Les transitions de statut de synchronisation
- La récupération après arrêt brutal (Syncing -> Pending)
- La purge des scans confirmés après la période de rétention

Le stockage repose sur un fichier SQLite (journal WAL, synchronous=FULL).
Toutes les opérations passent par un verrou unique : il n'y a jamais
d'écritures partielles entrelacées.
"""

import os
import time
import sqlite3
import threading
from contextlib import contextmanager
from datetime import timedelta
from typing import Dict, Any, List, Optional, Iterable, Union

from .exceptions import DuplicateRecordError, StoreClosedError
from .models import ScanRecord, ScanStatus


_SCHEMA = """
    CREATE TABLE IF NOT EXISTS scan_records (
        seq             INTEGER PRIMARY KEY AUTOINCREMENT,
        id              TEXT    NOT NULL UNIQUE,
        content         TEXT    NOT NULL,
        symbology       TEXT,
        captured_at     TEXT    NOT NULL,
        device_id       TEXT    NOT NULL DEFAULT '',
        session_id      TEXT    NOT NULL DEFAULT '',
        status          TEXT    NOT NULL DEFAULT 'Pending',
        attempts        INTEGER NOT NULL DEFAULT 0,
        last_error      TEXT,
        created_at      REAL    NOT NULL,
        updated_at      REAL    NOT NULL,
        confirmed_at    REAL
    );

    CREATE INDEX IF NOT EXISTS idx_scan_records_status
        ON scan_records(status, seq);

    CREATE INDEX IF NOT EXISTS idx_scan_records_confirmed_at
        ON scan_records(confirmed_at);
"""


class ScanRecordStore:
    """
    Stockage local des enregistrements de scan

    Un seul propriétaire par appareil. Chaque écriture est validée (commit)
    avant de rendre la main à l'appelant.
    """

    def __init__(self, config, logger, db_path: Optional[str] = None, clock=time.time):
        """
        Initialise le stockage

        Args:
            config: Instance de ScannerConfig
            logger: Instance de ScannerLogger
            db_path: Chemin du fichier SQLite (surcharge storage.db_path)
            clock: Source de temps (secondes epoch)
        """
        self.config = config
        self.logger = logger.get_logger()
        self.db_path = db_path or config.get_storage_config()['db_path']
        self._clock = clock
        self._lock = threading.Lock()
        self._closed = False

        if self.db_path != ':memory:':
            db_dir = os.path.dirname(os.path.abspath(self.db_path))
            os.makedirs(db_dir, exist_ok=True)

        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=FULL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

        self.logger.info(f"Stockage des scans initialisé: {self.db_path}")

    # Écriture

    def append(self, record: ScanRecord) -> str:
        """
        Ajoute un enregistrement et le rend durable avant de retourner

        Args:
            record: Enregistrement à ajouter (statut Pending attendu)

        Returns:
            str: Identifiant de l'enregistrement

        Raises:
            DuplicateRecordError: si l'identifiant existe déjà
        """
        now = self._clock()
        with self._guard():
            try:
                with self._conn:
                    cursor = self._conn.execute(
                        """INSERT INTO scan_records
                           (id, content, symbology, captured_at, device_id, session_id,
                            status, attempts, last_error, created_at, updated_at)
                           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                        (record.id, record.content, record.symbology, record.captured_at,
                         record.device_id, record.session_id, record.status.value,
                         record.attempts, record.last_error, now, now),
                    )
            except sqlite3.IntegrityError:
                raise DuplicateRecordError(record.id)

        record.seq = cursor.lastrowid
        record.created_at = now
        record.updated_at = now
        self.logger.debug(f"Scan {record.id} enregistré (seq={record.seq})")
        return record.id

    def update_status(self, record_id: str, new_status: ScanStatus, error: Optional[str] = None) -> bool:
        """
        Change le statut d'un enregistrement

        Args:
            record_id: Identifiant de l'enregistrement
            new_status: Nouveau statut
            error: Raison de l'échec ou du conflit, le cas échéant

        Returns:
            bool: False si l'enregistrement est introuvable
        """
        new_status = ScanStatus(new_status)
        now = self._clock()

        assignments = ["status = ?", "updated_at = ?"]
        params: List[Any] = [new_status.value, now]
        if new_status == ScanStatus.CONFIRMED:
            assignments += ["confirmed_at = ?", "last_error = NULL"]
            params.append(now)
        elif error is not None:
            assignments.append("last_error = ?")
            params.append(error)
        params.append(record_id)

        with self._guard():
            with self._conn:
                cursor = self._conn.execute(
                    f"UPDATE scan_records SET {', '.join(assignments)} WHERE id = ?",
                    params,
                )

        if cursor.rowcount == 0:
            self.logger.warning(f"Mise à jour de statut: scan {record_id} introuvable")
            return False

        self.logger.debug(f"Scan {record_id} -> {new_status.value}")
        return True

    def claim_pending(self, limit: int) -> List[ScanRecord]:
        """
        Sélectionne les plus anciens enregistrements Pending et les passe en Syncing

        Args:
            limit: Nombre maximum d'enregistrements

        Returns:
            list: Enregistrements réservés, dans l'ordre de capture
        """
        now = self._clock()
        with self._guard():
            with self._conn:
                rows = self._conn.execute(
                    "SELECT id FROM scan_records WHERE status = ? ORDER BY seq ASC LIMIT ?",
                    (ScanStatus.PENDING.value, limit),
                ).fetchall()
                ids = [row['id'] for row in rows]
                if not ids:
                    return []

                placeholders = ",".join("?" * len(ids))
                self._conn.execute(
                    f"UPDATE scan_records SET status = ?, updated_at = ? "
                    f"WHERE status = ? AND id IN ({placeholders})",
                    [ScanStatus.SYNCING.value, now, ScanStatus.PENDING.value] + ids,
                )
            return self._fetch_many(ids)

    def record_attempt(self, record_ids: Iterable[str]) -> List[ScanRecord]:
        """
        Incrémente le compteur de tentatives des enregistrements en Syncing

        Returns:
            list: Enregistrements à jour, dans l'ordre de capture
        """
        ids = list(record_ids)
        if not ids:
            return []

        placeholders = ",".join("?" * len(ids))
        with self._guard():
            with self._conn:
                self._conn.execute(
                    f"UPDATE scan_records SET attempts = attempts + 1, updated_at = ? "
                    f"WHERE status = ? AND id IN ({placeholders})",
                    [self._clock(), ScanStatus.SYNCING.value] + ids,
                )
            return self._fetch_many(ids)

    def release(self, record_ids: Iterable[str], error: Optional[str] = None) -> int:
        """
        Remet en Pending des enregistrements en Syncing

        Returns:
            int: Nombre d'enregistrements remis en attente
        """
        ids = list(record_ids)
        if not ids:
            return 0

        placeholders = ",".join("?" * len(ids))
        params: List[Any] = [ScanStatus.PENDING.value, self._clock()]
        error_clause = ""
        if error is not None:
            error_clause = ", last_error = ?"
            params.append(error)
        params += [ScanStatus.SYNCING.value] + ids

        with self._guard():
            with self._conn:
                cursor = self._conn.execute(
                    f"UPDATE scan_records SET status = ?, updated_at = ?{error_clause} "
                    f"WHERE status = ? AND id IN ({placeholders})",
                    params,
                )
        return cursor.rowcount

    def recover(self) -> int:
        """
        Récupération au démarrage : tout enregistrement Syncing repasse en Pending

        L'issue de la tentative précédente est inconnue ; l'identifiant sert
        de clé d'idempotence, une nouvelle soumission est donc sans risque.

        Returns:
            int: Nombre d'enregistrements récupérés
        """
        with self._guard():
            with self._conn:
                cursor = self._conn.execute(
                    "UPDATE scan_records SET status = ?, updated_at = ? WHERE status = ?",
                    (ScanStatus.PENDING.value, self._clock(), ScanStatus.SYNCING.value),
                )

        recovered = cursor.rowcount
        if recovered:
            self.logger.warning(f"Récupération: {recovered} scan(s) Syncing remis en Pending")
        return recovered

    def purge_confirmed_older_than(self, duration: Union[timedelta, float, int]) -> int:
        """
        Supprime les enregistrements confirmés depuis plus de `duration`

        Args:
            duration: timedelta ou nombre de secondes

        Returns:
            int: Nombre d'enregistrements supprimés
        """
        seconds = duration.total_seconds() if isinstance(duration, timedelta) else float(duration)
        if seconds < 0:
            raise ValueError("La durée de rétention ne peut pas être négative")

        cutoff = self._clock() - seconds
        with self._guard():
            with self._conn:
                cursor = self._conn.execute(
                    "DELETE FROM scan_records WHERE status = ? AND confirmed_at < ?",
                    (ScanStatus.CONFIRMED.value, cutoff),
                )

        purged = cursor.rowcount
        if purged:
            self.logger.info(f"Purge: {purged} scan(s) confirmé(s) supprimé(s)")
        return purged

    def delete(self, record_id: str) -> bool:
        """Supprime un enregistrement (acquittement explicite de l'opérateur)"""
        with self._guard():
            with self._conn:
                cursor = self._conn.execute(
                    "DELETE FROM scan_records WHERE id = ?", (record_id,)
                )
        return cursor.rowcount > 0

    # Lecture

    def get(self, record_id: str) -> Optional[ScanRecord]:
        with self._guard():
            row = self._conn.execute(
                "SELECT * FROM scan_records WHERE id = ?", (record_id,)
            ).fetchone()
        return _row_to_record(row) if row else None

    def get_pending(self, limit: Optional[int] = None) -> List[ScanRecord]:
        """
        Retourne les enregistrements Pending, les plus anciens d'abord

        Args:
            limit: Nombre maximum d'enregistrements (tous si None)
        """
        return self.list_by_status(ScanStatus.PENDING, limit)

    def list_by_status(self, status: ScanStatus, limit: Optional[int] = None) -> List[ScanRecord]:
        sql = "SELECT * FROM scan_records WHERE status = ? ORDER BY seq ASC"
        params: List[Any] = [ScanStatus(status).value]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._guard():
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_record(row) for row in rows]

    def list_all(self, limit: Optional[int] = None) -> List[ScanRecord]:
        sql = "SELECT * FROM scan_records ORDER BY seq ASC"
        params: List[Any] = []
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._guard():
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_record(row) for row in rows]

    def count_by_status(self) -> Dict[str, int]:
        """
        Retourne le nombre d'enregistrements par statut

        Returns:
            dict: {statut: nombre}, tous les statuts présents
        """
        with self._guard():
            rows = self._conn.execute(
                "SELECT status, COUNT(*) AS cnt FROM scan_records GROUP BY status"
            ).fetchall()

        counts = {status.value: 0 for status in ScanStatus}
        for row in rows:
            counts[row['status']] = row['cnt']
        return counts

    def pending_count(self) -> int:
        """Nombre de scans pas encore synchronisés (Pending + Syncing)"""
        counts = self.count_by_status()
        return counts[ScanStatus.PENDING.value] + counts[ScanStatus.SYNCING.value]

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._conn.close()
        self.logger.debug("Stockage des scans fermé")

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def _guard(self):
        """Verrou du stockage ; refuse toute opération après close()"""
        with self._lock:
            if self._closed:
                raise StoreClosedError(self.db_path)
            yield

    def _fetch_many(self, ids: List[str]) -> List[ScanRecord]:
        # Appelé verrou tenu
        placeholders = ",".join("?" * len(ids))
        rows = self._conn.execute(
            f"SELECT * FROM scan_records WHERE id IN ({placeholders}) ORDER BY seq ASC",
            ids,
        ).fetchall()
        return [_row_to_record(row) for row in rows]


def _row_to_record(row: sqlite3.Row) -> ScanRecord:
    return ScanRecord(
        id=row['id'],
        content=row['content'],
        captured_at=row['captured_at'],
        device_id=row['device_id'],
        session_id=row['session_id'],
        symbology=row['symbology'],
        status=ScanStatus(row['status']),
        attempts=row['attempts'],
        last_error=row['last_error'],
        seq=row['seq'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
        confirmed_at=row['confirmed_at'],
    )
