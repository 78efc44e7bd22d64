"""
Application Flask servant de pont local avec la PWA Scanner Logistique

Cette application expose une API JSON locale permettant au shell de la PWA :
- D'enregistrer les scans décodés
- D'afficher le nombre de scans en attente de synchronisation
- De traiter les scans rejetés ou en conflit
- De relayer les événements réseau (online/offline) du navigateur
"""

import logging

from flask import Flask, request, jsonify

from scanner.core.exceptions import (
    CaptureError, ConflictError, InvalidTransitionError, RecordNotFoundError, StoreClosedError
)
from scanner.core.models import ScanStatus, Resolution


class ScannerWebApp:
    """
    Application web Flask du scanner

    Cette classe encapsule l'application Flask et délègue chaque route aux
    composants de l'agent (pipeline de capture, moteur, moniteur).
    """

    def __init__(self, agent):
        """
        Initialise l'application web

        Args:
            agent: Instance de ScannerAgent portant les composants
        """
        self.agent = agent
        self.config = agent.config
        self.app_logger = agent.app_logger

        self.app = Flask(__name__)
        self.app.json.ensure_ascii = False

        # Désactiver les logs Flask pour éviter la pollution
        logging.getLogger('werkzeug').setLevel(logging.ERROR)

        self._register_routes()

        self.app_logger.info("Interface web initialisée")

    def _register_routes(self):
        """
        Enregistre toutes les routes Flask
        """
        pipeline = self.agent.pipeline
        engine = self.agent.engine
        store = self.agent.store
        monitor = self.agent.monitor

        @self.app.before_request
        def refuse_during_shutdown():
            if self.agent.shutdown_event.is_set() or store.closed:
                return jsonify({'success': False, 'error': 'ShuttingDown'}), 503

        @self.app.errorhandler(StoreClosedError)
        def handle_store_closed(e):
            return jsonify({'success': False, 'error': 'ShuttingDown', 'message': str(e)}), 503

        @self.app.errorhandler(RecordNotFoundError)
        def handle_not_found(e):
            return jsonify({'success': False, 'error': 'NotFound', 'message': str(e)}), 404

        @self.app.errorhandler(InvalidTransitionError)
        def handle_invalid_transition(e):
            return jsonify({'success': False, 'error': 'InvalidTransition', 'message': str(e)}), 409

        @self.app.errorhandler(ConflictError)
        def handle_conflict_error(e):
            return jsonify({'success': False, 'error': 'ConflictError', 'message': str(e)}), 409

        # Capture d'un scan décodé
        @self.app.route('/api/scans', methods=['POST'])
        def api_capture():
            """API pour enregistrer un résultat de décodage"""
            raw = request.get_json(silent=True)
            if raw is None:
                raw = request.get_data(as_text=True)

            try:
                record = pipeline.capture(raw)
            except CaptureError as e:
                return jsonify({
                    'success': False,
                    'error': e.code,
                    'message': e.message
                }), 400

            engine.trigger()
            return jsonify({'success': True, 'record': record.to_dict()}), 201

        # Statut du moteur (indicateur "scans en attente")
        @self.app.route('/api/status')
        def api_status():
            """API pour récupérer le statut de synchronisation"""
            status = engine.get_status()
            status['capture'] = pipeline.get_stats()
            status['sender'] = self.agent.sender.get_stats()
            status['conflict_journal'] = self.agent.resolver.get_journal(20)
            return jsonify(status)

        @self.app.route('/api/records')
        def api_records():
            """API pour lister les scans, éventuellement filtrés par statut"""
            status = request.args.get('status')
            limit = request.args.get('limit', default=100, type=int)

            if status:
                try:
                    records = store.list_by_status(ScanStatus(status), limit)
                except ValueError:
                    return jsonify({
                        'success': False,
                        'message': f'Statut inconnu: {status}'
                    }), 400
            else:
                records = store.list_all(limit)

            return jsonify({'records': [record.to_dict() for record in records]})

        @self.app.route('/api/records/<record_id>')
        def api_record(record_id):
            record = store.get(record_id)
            if record is None:
                raise RecordNotFoundError(record_id)
            return jsonify(record.to_dict())

        @self.app.route('/api/records/<record_id>/retry', methods=['POST'])
        def api_retry(record_id):
            """API pour remettre en attente un scan rejeté ou en conflit"""
            record = engine.retry_record(record_id)
            return jsonify({'success': True, 'record': record.to_dict()})

        @self.app.route('/api/records/<record_id>/resolve', methods=['POST'])
        def api_resolve(record_id):
            """API pour appliquer la décision de l'opérateur sur un conflit"""
            data = request.get_json(silent=True) or {}
            try:
                resolution = Resolution(data.get('resolution'))
            except ValueError:
                return jsonify({
                    'success': False,
                    'message': 'Résolution attendue: AcceptServer ou KeepLocal'
                }), 400

            record = engine.resolve_conflict(record_id, resolution)
            return jsonify({'success': True, 'record': record.to_dict()})

        @self.app.route('/api/records/<record_id>', methods=['DELETE'])
        def api_acknowledge(record_id):
            """API pour acquitter un scan rejeté ou en conflit"""
            engine.acknowledge(record_id)
            return jsonify({'success': True})

        # Synchronisation forcée
        @self.app.route('/api/sync', methods=['POST'])
        def api_sync():
            """API pour déclencher immédiatement une tentative de synchronisation"""
            report = engine.run_once(force=True)
            return jsonify({'success': True, 'report': report.to_dict()})

        # Événements réseau du navigateur
        @self.app.route('/api/connectivity', methods=['POST'])
        def api_connectivity():
            """API relayant les événements online/offline du shell"""
            data = request.get_json(silent=True) or {}
            if not isinstance(data.get('online'), bool):
                return jsonify({
                    'success': False,
                    'message': "Champ 'online' (booléen) requis"
                }), 400

            changed = monitor.set_online() if data['online'] else monitor.set_offline()
            return jsonify({
                'success': True,
                'changed': changed,
                'state': monitor.state.value
            })

        # Cycle de vie du service worker
        @self.app.route('/api/shell/update-available', methods=['POST'])
        def api_shell_update():
            """Nouvelle version du shell disponible ; le moteur n'a pas à réagir"""
            self.app_logger.info("Nouvelle version du shell PWA disponible")
            return jsonify({'success': True})

    def run(self, host='127.0.0.1', port=18744, debug=False):
        """
        Lance l'application Flask

        Args:
            host: Adresse d'écoute
            port: Port d'écoute
            debug: Mode debug Flask
        """
        web_config = self.config.get_web_config()
        host = web_config.get('host', host)
        port = web_config.get('port', port)

        self.app_logger.info(f"Démarrage interface web sur http://{host}:{port}")

        self.app.run(
            host=host,
            port=port,
            debug=debug,
            threaded=True,
            use_reloader=False
        )
