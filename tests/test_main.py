"""Tests du point d'entrée en ligne de commande."""
import pytest

from scanner.main import main


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.delenv('API_BASE_URL', raising=False)
    path = tmp_path / "scanner.ini"
    path.write_text(
        "[storage]\n"
        f"db_path = {tmp_path / 'data' / 'scans.db'}\n"
        "[logging]\n"
        f"log_file = {tmp_path / 'logs' / 'scanner.log'}\n"
        "[connectivity]\n"
        "use_probe = false\n"
        "initial_state = offline\n"
        "[capture]\n"
        "device_id = scanner-cli\n",
        encoding='utf-8'
    )
    return str(path)


def test_create_config_requires_path():
    assert main(['--create-config']) == 1


def test_create_and_validate_config(tmp_path, monkeypatch):
    monkeypatch.delenv('API_BASE_URL', raising=False)
    path = str(tmp_path / "nouveau.ini")

    assert main(['--create-config', '--config', path]) == 0
    assert main(['--validate-config', '--config', path]) == 0


def test_capture_then_list(config_file, capsys):
    assert main(['-c', config_file, '-m', 'capture', '--content', '3760123456789']) == 0
    captured = capsys.readouterr().out
    record_id = captured.split("Scan enregistré: ")[1].split()[0]

    assert main(['-c', config_file, '-m', 'capture', '--content', '   ']) == 1

    assert main(['-c', config_file, '-m', 'list', '--status-filter', 'Pending']) == 0
    listing = capsys.readouterr().out
    assert record_id in listing
    assert '"status": "Pending"' in listing


def test_sync_while_offline_is_skipped(config_file, capsys):
    main(['-c', config_file, '-m', 'capture', '--content', 'COLIS-1'])
    capsys.readouterr()

    assert main(['-c', config_file, '-m', 'sync']) == 0
    assert '"skipped_reason": "offline"' in capsys.readouterr().out


def test_status_and_purge(config_file, capsys):
    assert main(['-c', config_file, '-m', 'status']) == 0
    assert '"pending_count": 0' in capsys.readouterr().out

    assert main(['-c', config_file, '-m', 'purge']) == 0
    assert "0 scan(s)" in capsys.readouterr().out
