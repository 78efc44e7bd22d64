"""Tests du pont web local (Flask)."""
from unittest.mock import MagicMock

import pytest

from scanner.core.models import ConnectivityState, ScanStatus
from scanner.main import ScannerAgent
from scanner.web.app import ScannerWebApp


class ApiSession:
    """Session requests factice : confirme tout, sauf les identifiants rejetés"""

    def __init__(self):
        self.rejected = set()
        self.get = MagicMock()

    def post(self, url, json, headers, timeout, verify):
        results = []
        for scan in json['scans']:
            if scan['id'] in self.rejected:
                results.append({'id': scan['id'], 'outcome': 'Rejected', 'reason': 'Inconnu'})
            else:
                results.append({'id': scan['id'], 'outcome': 'Confirmed'})
        response = MagicMock()
        response.status_code = 200
        response.json.return_value = {'results': results}
        return response


@pytest.fixture
def session():
    return ApiSession()


@pytest.fixture
def agent(config, session):
    a = ScannerAgent(config=config, initial_state=ConnectivityState.ONLINE, session=session)
    yield a
    a.shutdown()


@pytest.fixture
def client(agent):
    web = ScannerWebApp(agent)
    web.app.testing = True
    return web.app.test_client()


class TestCaptureRoute:

    def test_capture_json(self, client, agent):
        response = client.post('/api/scans', json={'content': '3760123456789', 'symbology': 'EAN_13'})

        assert response.status_code == 201
        body = response.get_json()
        assert body['success'] is True
        assert body['record']['status'] == 'Pending'
        assert agent.store.pending_count() == 1

    def test_capture_raw_body(self, client):
        response = client.post('/api/scans', data='COLIS-42', content_type='text/plain')
        assert response.status_code == 201
        assert response.get_json()['record']['payload']['content'] == 'COLIS-42'

    def test_invalid_capture(self, client, agent):
        response = client.post('/api/scans', json={'content': '   '})

        assert response.status_code == 400
        assert response.get_json()['error'] == 'InvalidPayload'
        assert agent.store.list_all() == []


class TestStatusAndRecords:

    def test_status_shows_pending_count(self, client):
        client.post('/api/scans', json={'content': 'A'})
        client.post('/api/scans', json={'content': 'B'})

        body = client.get('/api/status').get_json()
        assert body['pending_count'] == 2
        assert body['connectivity'] == 'Online'
        assert body['capture']['captured'] == 2

    def test_records_filter(self, client):
        client.post('/api/scans', json={'content': 'A'})

        assert len(client.get('/api/records?status=Pending').get_json()['records']) == 1
        assert client.get('/api/records?status=Confirmed').get_json()['records'] == []
        assert client.get('/api/records?status=Perdu').status_code == 400

    def test_unknown_record(self, client):
        assert client.get('/api/records/inconnu').status_code == 404
        assert client.post('/api/records/inconnu/retry').status_code == 404
        assert client.delete('/api/records/inconnu').status_code == 404


class TestSyncRoutes:

    def test_forced_sync_confirms_records(self, client, agent):
        record_id = client.post('/api/scans', json={'content': 'A'}).get_json()['record']['id']

        body = client.post('/api/sync').get_json()
        assert body['report']['confirmed'] == 1
        assert agent.store.get(record_id).status == ScanStatus.CONFIRMED

    def test_failed_record_retry_and_acknowledge(self, client, agent, session):
        record_id = client.post('/api/scans', json={'content': 'A'}).get_json()['record']['id']
        session.rejected.add(record_id)
        client.post('/api/sync')
        assert agent.store.get(record_id).status == ScanStatus.FAILED

        response = client.post(f'/api/records/{record_id}/retry')
        assert response.status_code == 200
        assert response.get_json()['record']['status'] == 'Pending'

        # Déjà en attente : l'action n'est plus possible
        assert client.delete(f'/api/records/{record_id}').status_code == 409

        client.post('/api/sync')
        assert client.delete(f'/api/records/{record_id}').status_code == 200
        assert agent.store.get(record_id) is None

    def test_resolve_validation(self, client):
        record_id = client.post('/api/scans', json={'content': 'A'}).get_json()['record']['id']

        bad = client.post(f'/api/records/{record_id}/resolve', json={'resolution': 'Peut-être'})
        assert bad.status_code == 400

        not_conflicted = client.post(f'/api/records/{record_id}/resolve',
                                     json={'resolution': 'KeepLocal'})
        assert not_conflicted.status_code == 409


class TestConnectivityRoute:

    def test_browser_events(self, client, agent):
        response = client.post('/api/connectivity', json={'online': False})
        assert response.get_json() == {'success': True, 'changed': True, 'state': 'Offline'}
        assert agent.engine.is_suspended

        again = client.post('/api/connectivity', json={'online': False})
        assert again.get_json()['changed'] is False

        client.post('/api/connectivity', json={'online': True})
        assert not agent.engine.is_suspended

    def test_requires_boolean(self, client):
        assert client.post('/api/connectivity', json={'online': 'oui'}).status_code == 400

    def test_shell_update_notification(self, client):
        assert client.post('/api/shell/update-available').status_code == 200


class TestShutdown:

    def test_requests_refused_after_shutdown(self, client, agent):
        agent.shutdown()

        response = client.post('/api/scans', json={'content': 'A'})
        assert response.status_code == 503
        assert response.get_json()['error'] == 'ShuttingDown'

    def test_store_closed_during_request(self, client, agent, monkeypatch):
        def close_then_capture(raw):
            agent.store.close()
            return agent.store.pending_count()

        monkeypatch.setattr(agent.pipeline, 'capture', close_then_capture)

        response = client.post('/api/scans', json={'content': 'A'})
        assert response.status_code == 503
