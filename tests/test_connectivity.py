"""Tests du moniteur de connectivité."""
from collections import namedtuple
from unittest.mock import MagicMock

import pytest

from scanner.core import connectivity
from scanner.core.connectivity import ConnectivityMonitor
from scanner.core.models import ConnectivityState

IfStats = namedtuple('IfStats', ['isup'])


class TestTransitions:

    def test_listeners_called_only_on_transition(self, monitor):
        calls = []
        monitor.add_listener(lambda old, new: calls.append((old, new)))

        assert monitor.set_online() is False
        assert monitor.set_offline() is True
        assert monitor.set_offline() is False
        assert monitor.set_online() is True

        assert calls == [
            (ConnectivityState.ONLINE, ConnectivityState.OFFLINE),
            (ConnectivityState.OFFLINE, ConnectivityState.ONLINE),
        ]
        assert monitor.get_status()['transitions'] == 2

    def test_failing_listener_does_not_block_others(self, monitor):
        calls = []

        def broken(old, new):
            raise RuntimeError("abonné défaillant")

        monitor.add_listener(broken)
        monitor.add_listener(lambda old, new: calls.append(new))

        monitor.set_offline()
        assert calls == [ConnectivityState.OFFLINE]
        assert not monitor.is_online()


class TestInitialState:

    def test_from_config(self, config, logger):
        config.set('connectivity', 'initial_state', 'offline')
        monitor = ConnectivityMonitor(config, logger)
        assert monitor.state == ConnectivityState.OFFLINE

    def test_explicit_state_wins(self, config, logger):
        config.set('connectivity', 'initial_state', 'offline')
        monitor = ConnectivityMonitor(config, logger, initial_state=ConnectivityState.ONLINE)
        assert monitor.is_online()

    def test_probe_when_nothing_is_known(self, config, logger, monkeypatch):
        config.set('connectivity', 'initial_state', '')
        monkeypatch.setattr(connectivity.psutil, 'net_if_stats', lambda: {'lo': IfStats(True)})

        monitor = ConnectivityMonitor(config, logger)
        assert monitor.state == ConnectivityState.OFFLINE


class TestProbe:

    @pytest.fixture
    def sender(self):
        sender = MagicMock()
        sender.test_connection.return_value = (True, "Connexion OK")
        return sender

    def test_active_interface_and_reachable_api(self, config, logger, sender, monkeypatch):
        monkeypatch.setattr(connectivity.psutil, 'net_if_stats',
                            lambda: {'lo': IfStats(True), 'eth0': IfStats(True)})
        monitor = ConnectivityMonitor(config, logger, sender=sender)

        assert monitor.probe() is True
        sender.test_connection.assert_called_once()

    def test_interfaces_down(self, config, logger, sender, monkeypatch):
        monkeypatch.setattr(connectivity.psutil, 'net_if_stats',
                            lambda: {'lo': IfStats(True), 'wlan0': IfStats(False)})
        monitor = ConnectivityMonitor(config, logger, sender=sender)

        assert monitor.probe() is False
        sender.test_connection.assert_not_called()

    def test_api_unreachable(self, config, logger, sender, monkeypatch):
        monkeypatch.setattr(connectivity.psutil, 'net_if_stats', lambda: {'eth0': IfStats(True)})
        sender.test_connection.return_value = (False, "Impossible de se connecter à l'API")
        monitor = ConnectivityMonitor(config, logger, sender=sender)

        assert monitor.probe() is False

    def test_no_probe_thread_when_host_notifies(self, monitor):
        monitor.start()
        assert monitor.is_running is False
        assert monitor.get_status()['probe_running'] is False

    def test_probe_thread_start_stop(self, config, logger, sender, monkeypatch):
        monkeypatch.setattr(connectivity.psutil, 'net_if_stats', lambda: {'eth0': IfStats(True)})
        config.set('connectivity', 'use_probe', 'true')
        config.set('connectivity', 'probe_interval', '0.05')
        monitor = ConnectivityMonitor(config, logger, sender=sender,
                                      initial_state=ConnectivityState.OFFLINE)

        monitor.start()
        try:
            assert monitor.is_running
        finally:
            monitor.stop()
        assert not monitor.is_running
