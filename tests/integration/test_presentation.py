import pytest


@pytest.mark.integration
def test_home_serves_ui(template_client):
    r = template_client.get('/')
    assert r.status_code == 200
    assert b'TuneAssist' in r.data
    assert b'/static/js/app.js' in r.data
    assert b'Generate Test Data' in r.data
    # CSP forbids inline script bodies
    assert b'<script>' not in r.data


@pytest.mark.integration
def test_logs_view_uses_external_js(template_client):
    r = template_client.get('/logs')
    assert r.status_code == 200
    assert b'/static/js/logs.js' in r.data


@pytest.mark.integration
def test_logs_api_without_logs(template_client):
    data = template_client.get('/api/logs').get_json()
    assert data == {'date': None, 'count': 0, 'entries': []}
    assert template_client.get('/api/logs?limit=x').status_code == 400


@pytest.mark.integration
def test_client_download(template_client):
    r = template_client.get('/download/client.py')
    assert r.status_code == 200
    assert b'TuneAssistClient' in r.data
