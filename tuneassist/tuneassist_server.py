#!/usr/bin/env python3
"""
TuneAssist Server - Datalog validation, simulation and AI tuning analysis
Run this on the tuning laptop and open the printed URL in a browser
"""

import json
import os
import socket
import subprocess
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

# Imports (do not auto-install; fail with guidance)
try:
    from flask import (Blueprint, Flask, current_app, jsonify, make_response,
                       render_template_string, request, send_file)
    from flask_cors import CORS
except ImportError:
    print("Missing dependencies for TuneAssist server: flask, flask-cors")
    print("Activate your venv and run: pip install flask flask-cors")
    sys.exit(1)

from tuneassist import __version__
from tuneassist.modules.ai_config import AIConfig, AIConfigError
from tuneassist.modules.datalog_parser import (INVALID_DATALOG_HINT, FormatError, ParseError,
                                               chart_series, summarize_datalog, validate_datalog)
from tuneassist.modules.llm_interface import LLMError, LLMInterface
from tuneassist.modules.run_log import log_analysis_run, read_runs
from tuneassist.modules.scenario_simulator import (UnknownScenarioError, generate_simulated_datalog,
                                                   list_scenarios, resolve_scenario)
from tuneassist.modules.tune_exporter import (apply_suggestions_to_skl, generate_report,
                                              report_filename)
from tuneassist.modules.tuning_analyzer import (ENGINE_TYPES, AnalysisError, TuningAnalyzer,
                                                TuningSuggestions)

# Configuration
CONFIG = {
    'port': 8080,
    'bind_host': '127.0.0.1',  # override via TA_BIND
}

# Environment overrides for easy experimentation
try:
    CONFIG['port'] = int(os.getenv('TA_PORT', str(CONFIG['port'])))
except ValueError:
    pass
CONFIG['bind_host'] = os.getenv('TA_BIND', CONFIG['bind_host'])

NO_DATALOG_HINT = 'Please upload or generate a datalog file first.'
ANALYSIS_FAILED_HINT = (
    'Failed to get tuning suggestions. The AI model may be overloaded or an error '
    'occurred. Please try again.'
)

bp = Blueprint('tuneassist', __name__)


def create_app(ai_config: Optional[AIConfig] = None) -> Flask:
    """Build the Flask app; the AI config object lives for the app's lifetime."""
    app = Flask(__name__)
    CORS(app)  # Allow cross-origin requests
    app.config['AI_CONFIG'] = ai_config if ai_config is not None else AIConfig.from_env()
    app.register_blueprint(bp)
    return app


def _ai_config() -> AIConfig:
    return current_app.config['AI_CONFIG']


def _error(message: str, status: int, **extra):
    body = {'success': False, 'error': message}
    body.update(extra)
    return jsonify(body), status


def _json_request() -> Dict:
    """JSON object body of the request; anything else reads as empty."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _string_field(data: Dict, key: str, default: str = '') -> Optional[str]:
    """JSON field that must be a string when present; None signals a wrong type."""
    value = data.get(key)
    if value is None:
        return default
    return value if isinstance(value, str) else None


def _local_interface(config: AIConfig) -> LLMInterface:
    base = config.ollama_base_url if config.local_backend == 'ollama' else config.llamafile_base_url
    return LLMInterface(llm_backend=config.local_backend, model=config.local_model,
                        base_url=base, timeout=config.request_timeout)


def _datalog_payload(rows) -> Dict:
    return {
        'success': True,
        'rows': [r.to_dict() for r in rows],
        'summary': summarize_datalog(rows),
        'chart': chart_series(rows),
    }


def _validate_or_error(text: str):
    """Return (rows, None) or (None, error response) for a datalog document."""
    try:
        return validate_datalog(text), None
    except FormatError as e:
        return None, _error(INVALID_DATALOG_HINT, 400, detail=str(e))
    except ParseError as e:
        return None, _error(f'Error parsing CSV: {e.diagnostic}', 400)


def run_analysis(config: AIConfig, datalog: str, engine_type: str = 'na',
                 engine_setup: str = '', turbo_setup: str = '') -> TuningSuggestions:
    """
    Analysis-request handler: run one datalog through the configured provider.

    Raises:
        AIConfigError: selected provider is not usable (e.g. no cloud key)
        LLMError: backend unreachable or failed
        AnalysisError: reply could not be parsed into suggestions
    """
    config.ensure_ready()
    analyzer = TuningAnalyzer(LLMInterface.from_config(config))
    return analyzer.analyze(datalog, engine_type, engine_setup, turbo_setup)


@bp.after_app_request
def set_security_headers(response):
    response.headers['Content-Security-Policy'] = "default-src 'self'"
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    return response


# Flask Routes

@bp.route('/')
def home():
    """Serve the browser UI"""
    html = '''
    <!DOCTYPE html>
    <html>
    <head>
        <title>TuneAssist</title>
        <link rel="stylesheet" href="/static/css/app.css">
    </head>
    <body>
        <div class="container">
            <h1>TuneAssist - Hondata AI Tuning Assistant</h1>
            <div class="grid">
                <div class="column">
                    <section class="panel">
                        <h2>1. Datalog</h2>
                        <input type="file" id="datalog-file" accept=".csv,text/csv">
                        <div id="datalog-status" class="muted">No datalog loaded.</div>
                    </section>
                    <section class="panel">
                        <h2>2. Simulator</h2>
                        <p class="muted">Don't have a datalog? Generate a simulated one to test the AI's analysis on common tuning issues.</p>
                        <select id="scenario-select"></select>
                        <button id="generate-btn">Generate Test Data</button>
                    </section>
                    <section class="panel">
                        <h2>3. Engine Setup</h2>
                        <label><input type="radio" name="engine-type" value="na" checked> Naturally Aspirated</label>
                        <label><input type="radio" name="engine-type" value="boosted"> Boosted</label>
                        <textarea id="engine-setup" placeholder="Engine details (e.g. K20A2, RBC intake manifold, 310cc injectors)"></textarea>
                        <textarea id="turbo-setup" placeholder="Turbo / induction setup"></textarea>
                        <label>Base map (.skl, optional) <input type="file" id="basemap-file" accept=".skl"></label>
                    </section>
                    <section class="panel">
                        <h2>4. AI Settings</h2>
                        <select id="provider-select">
                            <option value="cloud">Cloud (Gemini)</option>
                            <option value="local">Local (Ollama / llamafile)</option>
                        </select>
                        <input type="password" id="api-key" placeholder="Enter your Gemini API key">
                        <button id="save-key-btn">Save Key</button>
                        <div id="ai-status" class="muted">Loading...</div>
                    </section>
                    <button id="analyze-btn" class="primary" disabled>Analyze Datalog</button>
                </div>
                <div class="column">
                    <section class="panel">
                        <h2>Results</h2>
                        <div id="error" class="error hidden"></div>
                        <div id="summary" class="muted">Open your files, detail your setup, and click Analyze.</div>
                        <canvas id="chart" width="640" height="280"></canvas>
                        <div id="results"></div>
                        <div id="exports" class="hidden">
                            <button id="export-report-btn">Download Suggestions (.txt)</button>
                            <button id="export-skl-btn">Download Base Map (.skl)</button>
                        </div>
                    </section>
                </div>
            </div>
            <p class="muted disclaimer">AI-generated suggestions. Always verify on a dyno with a professional tuner. Use at your own risk.</p>
        </div>
        <script src="/static/js/app.js"></script>
    </body>
    </html>
    '''
    return render_template_string(html)


@bp.route('/logs', methods=['GET'])
def logs_view():
    """Simple browser viewer for JSONL analysis logs."""
    html = '''
    <!DOCTYPE html>
    <html>
    <head>
      <title>TuneAssist Logs</title>
      <link rel="stylesheet" href="/static/css/app.css">
    </head>
    <body>
      <div class="container">
        <h1>TuneAssist Logs</h1>
        <div class="row">
          <label>Date <input id="date" placeholder="YYYYMMDD (optional)"/></label>
          <label>Limit <input id="limit" value="200" size="4"/></label>
          <button id="load-btn">Load</button>
        </div>
        <pre id="out">(no data)</pre>
      </div>
      <script src="/static/js/logs.js"></script>
    </body>
    </html>
    '''
    return render_template_string(html)


@bp.route('/api/status', methods=['GET'])
def api_status():
    """Return server status"""
    return jsonify({
        'server': 'online',
        'version': __version__,
        'timestamp': datetime.now().isoformat(),
        'ai': _ai_config().status(),
        'scenarios': [s.id for s in list_scenarios()],
    })


@bp.route('/api/ai-config', methods=['GET'])
def api_ai_config():
    """Current AI provider configuration (never includes the API key)"""
    config = _ai_config()
    # Only the local provider needs a (blocking) reachability check
    has_local_model = config.provider == 'local' and _local_interface(config).local_model_available()
    return jsonify(config.status(has_local_model=has_local_model))


@bp.route('/api/ai-config/gemini-key', methods=['POST'])
def api_set_gemini_key():
    data = _json_request()
    try:
        _ai_config().set_gemini_key(data.get('apiKey'))
    except AIConfigError as e:
        return _error(str(e), 400)
    print('Gemini API key configured')
    return jsonify({'success': True})


@bp.route('/api/ai-config/provider', methods=['POST'])
def api_set_provider():
    data = _json_request()
    try:
        _ai_config().set_provider(data.get('provider'))
    except AIConfigError as e:
        return _error(str(e), 400)
    print(f"AI provider set to: {data.get('provider')}")
    return jsonify({'success': True, 'provider': _ai_config().provider})


@bp.route('/api/ai-config/local-model', methods=['POST'])
def api_set_local_model():
    data = _json_request()
    config = _ai_config()
    previous = config.local_model
    try:
        config.set_local_model(data.get('model'), backend=data.get('backend'))
    except AIConfigError as e:
        return _error(str(e), 400)
    return jsonify({
        'success': True,
        'previous_model': previous,
        'current_model': config.local_model,
        'backend': config.local_backend,
    })


@bp.route('/api/models', methods=['GET'])
def api_models():
    """Get list of models available on the local Ollama server"""
    config = _ai_config()
    try:
        models = _local_interface(config).list_local_models()
    except LLMError as e:
        return _error(str(e), 502)
    return jsonify({'current_model': config.local_model, 'available_models': models})


@bp.route('/api/scenarios', methods=['GET'])
def api_scenarios():
    return jsonify({'scenarios': [s.to_dict() for s in list_scenarios()]})


@bp.route('/api/simulate', methods=['POST'])
def api_simulate():
    """Generate a simulated datalog and return it already validated"""
    data = _json_request()
    scenario = _string_field(data, 'scenario')
    if scenario is None:
        return _error('Scenario must be a string', 400)
    seed = data.get('seed')
    if seed is not None and not isinstance(seed, int):
        return _error('Seed must be an integer', 400)
    try:
        descriptor = resolve_scenario(scenario)
        datalog = generate_simulated_datalog(descriptor.id, seed=seed)
    except UnknownScenarioError as e:
        return _error(str(e), 400)

    rows, err = _validate_or_error(datalog)
    if err:
        return err
    payload = _datalog_payload(rows)
    payload.update({'scenario': descriptor.to_dict(), 'datalog': datalog})
    return jsonify(payload)


@bp.route('/api/datalog', methods=['POST'])
def api_datalog():
    """Validate an uploaded datalog (multipart 'file' or JSON {datalog})"""
    upload = request.files.get('file')
    if upload is not None:
        try:
            text = upload.read().decode('utf-8-sig')
        except UnicodeDecodeError:
            return _error('Failed to read the file.', 400)
    else:
        data = _json_request()
        text = _string_field(data, 'datalog')

    if text is None or not text.strip():
        return _error(NO_DATALOG_HINT, 400)
    rows, err = _validate_or_error(text)
    if err:
        return err
    payload = _datalog_payload(rows)
    payload['datalog'] = text
    return jsonify(payload)


@bp.route('/api/analyze', methods=['POST'])
def api_analyze():
    """Request AI tuning suggestions for a datalog"""
    data = _json_request()
    config = _ai_config()
    record = {
        'mode': 'analysis',
        'timestamp': datetime.now().isoformat(),
        'server': {
            'provider': config.provider,
            'backend': config.active_backend,
            'model': config.active_model,
        },
        'request': {
            'engine_type': data.get('engineType', 'na'),
            'engine_setup': data.get('engineSetup'),
            'turbo_setup': data.get('turboSetup'),
            'rows': None,
            'scenario': data.get('scenario'),
        },
    }

    def rejected(message: str, status: int, **extra):
        record['result'] = {'success': False, 'error': extra.get('detail', message)}
        log_analysis_run(record)
        return _error(message, status, **extra)

    datalog = _string_field(data, 'datalog')
    engine_type = data.get('engineType', 'na')
    engine_setup = _string_field(data, 'engineSetup')
    turbo_setup = _string_field(data, 'turboSetup')

    if datalog is None or not datalog.strip():
        return rejected(NO_DATALOG_HINT, 400)
    if engine_setup is None:
        return rejected('engineSetup must be a string', 400)
    if turbo_setup is None:
        return rejected('turboSetup must be a string', 400)
    try:
        rows = validate_datalog(datalog)
    except FormatError as e:
        return rejected(INVALID_DATALOG_HINT, 400, detail=str(e))
    except ParseError as e:
        return rejected(f'Error parsing CSV: {e.diagnostic}', 400)
    record['request']['rows'] = len(rows)
    if not rows:
        return rejected('No valid datalog rows (RPM > 0) found.', 400)
    if engine_type not in ENGINE_TYPES:
        return rejected(f'Invalid engine type: {engine_type}', 400)

    start = time.time()
    try:
        suggestions = run_analysis(config, datalog, engine_type, engine_setup, turbo_setup)
    except AIConfigError as e:
        return rejected(str(e), 400)
    except (LLMError, AnalysisError) as e:
        print(f"AI analysis failed: {e}")
        record['result'] = {
            'success': False,
            'error': str(e),
            'duration_sec': round(time.time() - start, 2),
        }
        log_analysis_run(record)
        return _error(ANALYSIS_FAILED_HINT, 502, detail=str(e))

    record['result'] = {
        'success': True,
        'duration_sec': round(time.time() - start, 2),
        'fuel_adjustments': len(suggestions.fuel_adjustments),
        'ignition_adjustments': len(suggestions.ignition_adjustments),
        'observations': len(suggestions.other_observations),
    }
    log_analysis_run(record)
    return jsonify({'success': True, 'suggestions': suggestions.to_dict()})


@bp.route('/api/export/report', methods=['POST'])
def api_export_report():
    """Download the suggestions as a plain-text report"""
    data = _json_request()
    raw = data.get('suggestions')
    if not isinstance(raw, dict):
        return _error('Suggestions required', 400)
    engine_type = data.get('engineType', 'na')
    if engine_type not in ENGINE_TYPES:
        return _error(f'Invalid engine type: {engine_type}', 400)

    now = datetime.now()
    content = generate_report(TuningSuggestions.from_dict(raw), engine_type,
                              base_map_name=data.get('baseMapName'), now=now)
    response = make_response(content)
    response.headers['Content-Type'] = 'text/plain; charset=utf-8'
    response.headers['Content-Disposition'] = f'attachment; filename="{report_filename(now)}"'
    return response


@bp.route('/api/export/skl', methods=['POST'])
def api_export_skl():
    """Download the base map with the suggestions applied"""
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        return _error('Base map (.skl) file required', 400)
    try:
        raw = json.loads(request.form.get('suggestions') or '{}')
    except ValueError:
        return _error('Suggestions must be JSON', 400)
    if not isinstance(raw, dict):
        return _error('Suggestions must be a JSON object', 400)

    data = apply_suggestions_to_skl(upload.read(), TuningSuggestions.from_dict(raw))
    response = make_response(data)
    response.headers['Content-Type'] = 'application/octet-stream'
    response.headers['Content-Disposition'] = f'attachment; filename="{Path(upload.filename).name}"'
    return response


@bp.route('/api/logs', methods=['GET'])
def api_logs():
    """Return JSONL analysis logs for a given date."""
    try:
        limit = int(request.args.get('limit', '200'))
    except ValueError:
        return _error('limit must be an integer', 400)
    try:
        return jsonify(read_runs(date=request.args.get('date'), mode=request.args.get('mode'), limit=limit))
    except OSError as e:
        return _error(str(e), 500)


@bp.route('/download/client.py', methods=['GET'])
def download_client():
    """Serve the CLI client"""
    client_path = Path(__file__).parent / 'tuneassist_client.py'
    return send_file(str(client_path), as_attachment=True, download_name='tuneassist_client.py')


app = create_app()


def print_connection_guidance():
    """Show where to point the browser or CLI client"""
    print("\n" + "="*50)
    print("CONNECTION GUIDANCE")
    print("="*50)
    print("- Open the printed URL in a browser to upload a datalog or run a simulation.")
    print("- CLI: tuneassist --scenario knockEvent (auto-discovers this server).")
    print("- Analysis logs: /logs in the browser, or tools/aggregate_analysis_runs.py.")
    print("\n" + "="*50)


def start_llm_backend(config: AIConfig):
    """Ensure the selected LLM backend is usable"""
    print("\nChecking LLM backend...")

    if config.provider == 'cloud':
        if config.gemini_api_key:
            print(f"✓ Gemini API key configured (model: {config.gemini_model})")
        else:
            print("! No Gemini API key. Set GEMINI_API_KEY or enter it in the AI Settings panel.")
        return

    if config.local_backend == 'ollama':
        local = _local_interface(config)
        try:
            local.list_local_models()
            print("✓ Ollama is running")
        except LLMError:
            print("Starting Ollama...")
            try:
                subprocess.Popen(['ollama', 'serve'], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
            except FileNotFoundError:
                print("! ollama not found on PATH. Install it from https://ollama.com")
                return
            print("✓ Ollama started")
        if not local.local_model_available():
            print(f"Ensuring {config.local_model} is available...")
            subprocess.run(['ollama', 'pull', config.local_model])

    elif config.local_backend == 'llamafile':
        print("Please start llamafile manually:")
        print("  ./llamafile --server --nobrowser")


def main():
    print("""
    TuneAssist
    Hondata datalog analysis with cloud or local AI
    """)

    config = app.config['AI_CONFIG']
    start_llm_backend(config)
    print_connection_guidance()

    bind = CONFIG['bind_host']
    print("\n✓ Server starting:")
    if bind == '0.0.0.0':
        print(f"  • http://localhost:{CONFIG['port']}")
        try:
            print(f"  • http://{socket.gethostbyname(socket.gethostname())}:{CONFIG['port']}")
        except OSError:
            pass
    else:
        print(f"  • http://{bind}:{CONFIG['port']}")
    print(f"\n✓ AI provider: {config.provider} ({config.active_backend}, {config.active_model})")
    print("\nPress Ctrl+C to stop\n")

    app.run(
        host=bind,
        port=CONFIG['port'],
        debug=False  # Set True for development
    )


if __name__ == '__main__':
    main()
