import json

from transitbeacon.relay import RelayConfig, main


def test_missing_file_gives_defaults(tmp_path):
    config = RelayConfig.from_file(tmp_path / 'nope.json')
    assert config.scan_window_ms == 3000
    assert config.rebroadcast_dwell_ms == 2000
    assert config.capacity == 16
    assert config.adv_interval_ms == 20
    assert config.manufacturer_id == 0xFFFF
    assert config.uses_default_keys


def test_from_file_overrides_and_ignores_unknown(tmp_path):
    path = tmp_path / 'relay.json'
    path.write_text(json.dumps({
        'capacity': 4,
        'infra_key': 'site-infra',
        'client_key': 'site-client',
        'bogus': True,
    }))
    config = RelayConfig.from_file(path)
    assert config.capacity == 4
    assert not config.uses_default_keys
    assert not hasattr(config, 'bogus')


def test_generate_config(tmp_path, capsys):
    path = tmp_path / 'etc' / 'relay.json'
    assert main(['--config', str(path), '--generate-config']) == 0
    data = json.loads(path.read_text())
    assert data['scan_window_ms'] == 3000
    assert RelayConfig.from_file(path) == RelayConfig()


def test_status_with_loopback(tmp_path, capsys):
    rc = main(['--config', str(tmp_path / 'relay.json'), '--loopback', '--status'])
    out = capsys.readouterr().out
    assert rc == 0
    status = json.loads(out)
    assert status['active_count'] == 0
    assert status['phase'] == 'stopped'
