import io
import json
from unittest.mock import MagicMock, patch

import pytest

from tuneassist.modules.llm_interface import LLMError, LLMInterface
from tuneassist.modules.scenario_simulator import generate_simulated_datalog


def stub_reply():
    return json.dumps({
        "summary": "Ignition drops 6 degrees between 5400 and 5800 RPM.",
        "fuelAdjustments": [],
        "ignitionAdjustments": [{
            "rpmRange": "5400-5800",
            "loadCondition": "WOT",
            "suggestion": "Remove 2 degrees",
            "reason": "Timing drop consistent with knock",
        }],
        "otherObservations": [{"observation": "AFR steady at 11.8", "recommendation": "None"}],
    })


def analyze_body(**overrides):
    body = {
        'datalog': generate_simulated_datalog('knockEvent'),
        'engineType': 'na',
        'engineSetup': 'K20A2',
        'turboSetup': '',
        'scenario': 'knockEvent',
    }
    body.update(overrides)
    return body


@pytest.mark.integration
def test_analyze_success_and_logs(flask_client, monkeypatch, tmp_path):
    monkeypatch.setattr(LLMInterface, 'get_response', lambda self, prompt, **k: stub_reply())

    r = flask_client.post('/api/analyze', json=analyze_body())
    assert r.status_code == 200
    data = r.get_json()
    assert data['success'] is True
    assert data['suggestions']['ignitionAdjustments'][0]['rpmRange'] == '5400-5800'

    logs = flask_client.get('/api/logs').get_json()
    assert logs['count'] == 1
    entry = logs['entries'][0]
    assert entry['mode'] == 'analysis'
    assert entry['server']['backend'] == 'gemini'
    assert entry['request']['rows'] == 61
    assert entry['request']['scenario'] == 'knockEvent'
    assert entry['result']['success'] is True
    assert entry['result']['ignition_adjustments'] == 1
    assert list((tmp_path / 'logs').glob('*.jsonl'))


@pytest.mark.integration
def test_analyze_uses_selected_provider(flask_client, monkeypatch):
    seen = {}

    def fake(self, prompt, **k):
        seen['backend'] = self.llm_backend
        seen['model'] = self.model
        seen['prompt'] = prompt
        return stub_reply()

    monkeypatch.setattr(LLMInterface, 'get_response', fake)
    flask_client.post('/api/ai-config/provider', json={'provider': 'local'})
    flask_client.post('/api/ai-config/local-model', json={'model': 'mistral'})

    r = flask_client.post('/api/analyze', json=analyze_body(engineType='boosted', turboSetup='T3 8psi'))
    assert r.status_code == 200
    assert seen['backend'] == 'ollama'
    assert seen['model'] == 'mistral'
    assert 'T3 8psi' in seen['prompt']
    assert '11.0-11.5' in seen['prompt']


@pytest.mark.integration
def test_analyze_requires_datalog(flask_client):
    r = flask_client.post('/api/analyze', json=analyze_body(datalog=''))
    assert r.status_code == 400
    assert 'upload or generate a datalog' in r.get_json()['error']


@pytest.mark.integration
def test_analyze_requires_valid_rows(flask_client):
    r = flask_client.post('/api/analyze', json=analyze_body(datalog='RPM,MAP\n0,1.0\n'))
    assert r.status_code == 400
    r2 = flask_client.post('/api/analyze', json=analyze_body(datalog='Speed\n1\n'))
    assert r2.status_code == 400


@pytest.mark.integration
def test_analyze_rejects_engine_type(flask_client):
    r = flask_client.post('/api/analyze', json=analyze_body(engineType='rotary'))
    assert r.status_code == 400


@pytest.mark.integration
def test_analyze_without_cloud_key(template_client):
    template_client.post('/api/ai-config/provider', json={'provider': 'cloud'})
    r = template_client.post('/api/analyze', json=analyze_body())
    assert r.status_code == 400
    assert r.get_json()['error'] == 'Gemini API key not configured'


@pytest.mark.integration
def test_analyze_backend_failure_is_logged(flask_client, monkeypatch):
    def boom(self, prompt, **k):
        raise LLMError('Gemini API request failed with status 429')
    monkeypatch.setattr(LLMInterface, 'get_response', boom)

    r = flask_client.post('/api/analyze', json=analyze_body())
    assert r.status_code == 502
    data = r.get_json()
    assert data['success'] is False
    assert '429' in data['detail']

    entry = flask_client.get('/api/logs?mode=analysis').get_json()['entries'][-1]
    assert entry['result']['success'] is False


@pytest.mark.integration
def test_analyze_unparseable_reply(flask_client, monkeypatch):
    monkeypatch.setattr(LLMInterface, 'get_response', lambda self, prompt, **k: 'Sorry, no JSON today.')
    r = flask_client.post('/api/analyze', json=analyze_body())
    assert r.status_code == 502


@pytest.mark.integration
def test_export_report(flask_client):
    r = flask_client.post('/api/export/report', json={
        'suggestions': json.loads(stub_reply()),
        'engineType': 'na',
        'baseMapName': 'street.skl',
    })
    assert r.status_code == 200
    assert r.headers['Content-Type'].startswith('text/plain')
    assert 'Hondata_AI_Suggestions_' in r.headers['Content-Disposition']
    text = r.get_data(as_text=True)
    assert '--- IGNITION ADJUSTMENTS ---' in text
    assert '--- FUEL ADJUSTMENTS ---' not in text
    assert 'Base Map: street.skl' in text


@pytest.mark.integration
def test_export_report_requires_suggestions(flask_client):
    assert flask_client.post('/api/export/report', json={'engineType': 'na'}).status_code == 400


@pytest.mark.integration
def test_export_skl_passthrough(flask_client):
    payload = bytes(range(256))
    r = flask_client.post('/api/export/skl', data={
        'file': (io.BytesIO(payload), 'street.skl'),
        'suggestions': stub_reply(),
    }, content_type='multipart/form-data')
    assert r.status_code == 200
    assert r.data == payload
    assert 'street.skl' in r.headers['Content-Disposition']


@pytest.mark.integration
def test_export_skl_requires_file(flask_client):
    r = flask_client.post('/api/export/skl', data={'suggestions': '{}'},
                          content_type='multipart/form-data')
    assert r.status_code == 400


@pytest.mark.integration
@pytest.mark.parametrize('field,value', [
    ('datalog', 123),
    ('datalog', ['RPM,MAP', '3000,1']),
    ('engineSetup', 42),
    ('turboSetup', {'psi': 10}),
])
def test_analyze_rejects_non_string_fields(flask_client, monkeypatch, field, value):
    monkeypatch.setattr(LLMInterface, 'get_response', lambda self, prompt, **k: stub_reply())
    r = flask_client.post('/api/analyze', json=analyze_body(**{field: value}))
    assert r.status_code == 400
    assert r.get_json()['success'] is False


@pytest.mark.integration
def test_analyze_non_object_body(flask_client):
    r = flask_client.post('/api/analyze', json=['not', 'an', 'object'])
    assert r.status_code == 400


@pytest.mark.integration
def test_analyze_backend_non_json_reply_is_502(flask_client):
    bad = MagicMock(status_code=200)
    bad.json.side_effect = ValueError('Expecting value')
    with patch('requests.post', return_value=bad):
        r = flask_client.post('/api/analyze', json=analyze_body())
    assert r.status_code == 502
    assert 'invalid JSON' in r.get_json()['detail']


@pytest.mark.integration
def test_rejected_attempts_are_logged(template_client, tmp_path):
    template_client.post('/api/ai-config/provider', json={'provider': 'cloud'})
    assert template_client.post('/api/analyze', json=analyze_body()).status_code == 400
    assert template_client.post('/api/analyze', json=analyze_body(datalog='')).status_code == 400
    assert template_client.post('/api/analyze', json=analyze_body(engineType='rotary')).status_code == 400

    files = list((tmp_path / 'logs').glob('*.jsonl'))
    assert len(files) == 1
    entries = [json.loads(line) for line in files[0].read_text(encoding='utf-8').splitlines()]
    assert len(entries) == 3
    assert all(e['mode'] == 'analysis' and e['result']['success'] is False for e in entries)
    assert entries[0]['result']['error'] == 'Gemini API key not configured'
    assert entries[0]['request']['rows'] == 61
    assert entries[1]['request']['rows'] is None
    assert entries[2]['result']['error'] == 'Invalid engine type: rotary'
