import pytest

from conftest import ScriptedRadio
from transitbeacon.dashboard import create_app
from transitbeacon.protocol import encode, format_id
from transitbeacon.relay import RelayNode


@pytest.fixture
def node(fast_config, clock, generator):
    packet = generator.create(duration_secs=30)
    node = RelayNode(fast_config, ScriptedRadio([[encode(packet)]]), clock=clock)
    node.run_cycle()
    node.packet = packet
    return node


@pytest.fixture
def client(node):
    app = create_app(node)
    app.config['TESTING'] = True
    return app.test_client()


def test_status(client):
    resp = client.get('/api/relay/status')
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['active_count'] == 1
    assert data['phase'] == 'rebroadcast'
    assert data['stats']['client_tags_signed'] == 1


def test_notifications(client, node):
    data = client.get('/api/relay/notifications').get_json()
    assert data['count'] == 1
    assert data['notifications'][0]['notification_id'] == format_id(node.packet.notification_id)
    assert data['notifications'][0]['client_tag_set'] is True


def test_single_notification(client, node):
    nid = node.packet.notification_id.hex()
    resp = client.get(f'/api/relay/notifications/{nid}')
    assert resp.status_code == 200
    assert resp.get_json()['remaining_secs'] == 30


def test_unknown_notification(client):
    assert client.get('/api/relay/notifications/00000000').status_code == 404
    assert client.get('/api/relay/notifications/xyz').status_code == 400
