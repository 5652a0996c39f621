import pytest

from tuneassist.modules.ai_config import AIConfig
from tuneassist.tuneassist_server import create_app


@pytest.fixture()
def ai_config():
    return AIConfig(provider='cloud', gemini_api_key='test-key')


@pytest.fixture()
def flask_client(ai_config, monkeypatch, tmp_path):
    # Keep analysis run logs out of the repo
    monkeypatch.setenv('TA_LOG_DIR', str(tmp_path / 'logs'))
    app = create_app(ai_config)
    app.config['TESTING'] = True
    with app.test_client() as c:
        yield c


@pytest.fixture()
def template_client(monkeypatch, tmp_path):
    monkeypatch.setenv('TA_LOG_DIR', str(tmp_path / 'logs'))
    app = create_app(AIConfig(provider='local'))
    app.config['TESTING'] = True
    with app.test_client() as c:
        yield c
