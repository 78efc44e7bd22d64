"""
Module de communication avec l'API logistique distante

Ce module gère :
- L'envoi des lots de scans à POST {apiBaseUrl}/scans/batch
- L'interprétation des résultats par enregistrement
- La classification des erreurs réseau (toujours transitoires)
- Le test de disponibilité de l'API
"""

import json
import hashlib
from datetime import datetime
from typing import Dict, Any, Tuple, Sequence

import requests

from .exceptions import NetworkError
from .models import ScanRecord, BatchResult, RecordOutcome, Outcome, ConflictInfo


USER_AGENT = 'ScannerLogistique/1.0.0'


def batch_idempotency_key(records: Sequence[ScanRecord]) -> str:
    """
    Clé d'idempotence du lot : SHA-256 des identifiants triés

    Chaque scan garde son propre identifiant dans le corps ; cette clé ne
    fait que désigner le lot dans son ensemble, quel que soit l'ordre.
    """
    digest = hashlib.sha256()
    for record_id in sorted(record.id for record in records):
        digest.update(record_id.encode('utf-8'))
        digest.update(b"\n")
    return digest.hexdigest()


class ScanBatchSender:
    """
    Client de l'API d'ingestion des scans

    Toute défaillance réseau, tout timeout et toute réponse non-2xx sont
    remontés sous forme de NetworkError : le lot entier sera retenté.
    """

    def __init__(self, config, logger, session=None):
        """
        Initialise le sender avec la configuration

        Args:
            config: Instance de ScannerConfig
            logger: Instance de ScannerLogger
            session: Session requests (optionnelle, module requests par défaut)
        """
        self.config = config
        self.logger = logger.get_logger()
        self.http = session or requests

        api_config = config.get_api_config()
        self.base_url = api_config['base_url']
        self.timeout = api_config['timeout']
        self.verify_ssl = api_config['verify_ssl']

        # Statistiques de communication
        self.last_successful_send = None
        self.send_attempts = 0
        self.send_failures = 0

        self.logger.info("ScanBatchSender initialisé")
        self.logger.info(f"URL API: {self.base_url}")

    @property
    def batch_url(self) -> str:
        return f"{self.base_url}/scans/batch"

    @property
    def health_url(self) -> str:
        return f"{self.base_url}/health"

    def send_batch(self, records: Sequence[ScanRecord]) -> BatchResult:
        """
        Envoie un lot de scans, dans l'ordre de capture

        Args:
            records: Enregistrements à soumettre

        Returns:
            BatchResult: Résultats par identifiant

        Raises:
            NetworkError: échec réseau, timeout, statut non-2xx ou réponse illisible
        """
        self.send_attempts += 1

        body = {'scans': [record.to_submission() for record in records]}
        headers = {
            'Content-Type': 'application/json',
            'User-Agent': USER_AGENT,
            'Idempotency-Key': batch_idempotency_key(records),
        }

        self.logger.info(f"Envoi d'un lot de {len(records)} scan(s) à l'API")
        self.logger.debug(f"Taille des données: {len(json.dumps(body))} bytes")

        try:
            response = self.http.post(
                url=self.batch_url,
                json=body,
                headers=headers,
                timeout=self.timeout,
                verify=self.verify_ssl
            )

        except requests.exceptions.Timeout:
            self.send_failures += 1
            raise NetworkError(f"Timeout lors de l'envoi (>{self.timeout}s)")

        except requests.exceptions.SSLError as e:
            self.send_failures += 1
            raise NetworkError(f"Erreur SSL: {str(e)}")

        except requests.exceptions.ConnectionError as e:
            self.send_failures += 1
            raise NetworkError(f"Erreur de connexion: {str(e)}")

        except requests.exceptions.RequestException as e:
            self.send_failures += 1
            raise NetworkError(f"Erreur HTTP: {str(e)}")

        if not 200 <= response.status_code < 300:
            self.send_failures += 1
            raise NetworkError(
                f"Erreur serveur HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code
            )

        try:
            payload = response.json()
        except ValueError:
            self.send_failures += 1
            raise NetworkError("Réponse serveur non-JSON", status_code=response.status_code)

        result = self._parse_results(payload, records)
        result.status_code = response.status_code

        self.last_successful_send = datetime.now()
        self.logger.info(f"Lot accepté par l'API: {len(result.outcomes)} résultat(s)")
        return result

    def _parse_results(self, payload: Any, records: Sequence[ScanRecord]) -> BatchResult:
        """
        Aligne la réponse de l'API sur les identifiants du lot

        Args:
            payload: Corps JSON ({"results": [...]} ou liste)
            records: Lot soumis

        Returns:
            BatchResult: Résultats reconnus et identifiants inattendus
        """
        if isinstance(payload, dict):
            items = payload.get('results')
        else:
            items = payload

        if not isinstance(items, list):
            self.send_failures += 1
            raise NetworkError("Réponse serveur sans liste de résultats")

        batch_ids = {record.id for record in records}
        result = BatchResult()

        for item in items:
            if not isinstance(item, dict) or 'id' not in item:
                self.logger.warning(f"Résultat ignoré (format invalide): {item!r}")
                continue

            record_id = str(item['id'])
            if record_id not in batch_ids:
                self.logger.warning(f"Résultat pour un identifiant hors lot: {record_id}")
                result.unknown_ids.append(record_id)
                continue

            try:
                outcome = Outcome(item.get('outcome'))
            except ValueError:
                self.logger.warning(f"Résultat inconnu pour {record_id}: {item.get('outcome')!r}")
                continue

            conflict = ConflictInfo.from_response(item) if outcome == Outcome.CONFLICT else None
            result.outcomes[record_id] = RecordOutcome(
                id=record_id,
                outcome=outcome,
                reason=item.get('reason'),
                conflict=conflict
            )

        return result

    def test_connection(self) -> Tuple[bool, str]:
        """
        Teste la disponibilité de l'API sans envoyer de données

        Returns:
            Tuple[bool, str]: (Connexion OK, Message de statut)
        """
        try:
            self.logger.debug("Test de connexion à l'API...")

            response = self.http.get(
                url=self.health_url,
                headers={'User-Agent': USER_AGENT},
                timeout=self.timeout,
                verify=self.verify_ssl
            )

            # 404/405 : le serveur répond mais n'expose pas de endpoint de santé
            if response.status_code in (200, 204, 404, 405):
                return True, "Connexion OK"

            error_msg = f"API répond avec code {response.status_code}"
            self.logger.debug(error_msg)
            return False, error_msg

        except requests.exceptions.Timeout:
            return False, "Timeout lors du test de connexion"

        except requests.exceptions.ConnectionError:
            return False, "Impossible de se connecter à l'API"

        except requests.exceptions.RequestException as e:
            return False, f"Erreur lors du test: {str(e)}"

    def get_stats(self) -> Dict[str, Any]:
        """
        Retourne les statistiques de communication

        Returns:
            dict: Statistiques d'envoi
        """
        return {
            'last_successful_send': self.last_successful_send.isoformat() if self.last_successful_send else None,
            'total_attempts': self.send_attempts,
            'total_failures': self.send_failures,
            'success_rate': ((self.send_attempts - self.send_failures) / self.send_attempts * 100) if self.send_attempts > 0 else 0,
            'api_url': self.base_url
        }

