#!/usr/bin/env python3
"""
TuneAssist Client - Command-line front end for a running TuneAssist server
Upload or simulate a datalog, request AI tuning suggestions, save the report
"""

import argparse
import sys
from pathlib import Path
from typing import Dict, List, Optional

import requests


class ClientError(RuntimeError):
    """Server rejected a request or could not be reached"""


class TuneAssistClient:
    def __init__(self, server_url: Optional[str] = None, timeout: float = 180.0):
        """Initialize client with server URL"""
        # Try to auto-detect server
        if not server_url:
            server_url = self.find_server()

        self.server_url = server_url.rstrip('/')
        self.session = requests.Session()
        self.timeout = timeout
        self.connected = False

    def find_server(self) -> str:
        """Auto-detect a TuneAssist server on this machine"""
        print("🔍 Looking for TuneAssist server...")

        for host in ['127.0.0.1', 'localhost']:
            for port in [8080, 8000, 5000]:
                url = f"http://{host}:{port}"
                try:
                    response = requests.get(f"{url}/api/status", timeout=1)
                    if response.status_code == 200 and response.json().get('server') == 'online':
                        print(f"✓ Found server at {url}")
                        return url
                except (requests.exceptions.RequestException, ValueError):
                    continue

        print("\n❌ No server found automatically")
        print("Start it with: tuneassist-server (or pass --server URL)")
        return 'http://127.0.0.1:8080'

    def _json(self, response: requests.Response) -> Dict:
        try:
            data = response.json()
        except ValueError:
            raise ClientError(f"Unexpected response ({response.status_code})") from None
        if response.status_code >= 400 or data.get('success') is False:
            message = data.get('error', f"Request failed ({response.status_code})")
            if data.get('detail'):
                message = f"{message} [{data['detail']}]"
            raise ClientError(message)
        return data

    def _post(self, path: str, **kwargs) -> requests.Response:
        try:
            return self.session.post(f"{self.server_url}{path}", timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise ClientError(f"Server not reachable: {e}") from e

    def _get(self, path: str, **kwargs) -> requests.Response:
        try:
            return self.session.get(f"{self.server_url}{path}", timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise ClientError(f"Server not reachable: {e}") from e

    def check_connection(self) -> bool:
        """Verify connection to server"""
        try:
            status = self._json(self._get('/api/status'))
        except ClientError as e:
            print(f"❌ Connection failed: {e}")
            self.connected = False
            return False

        self.connected = True
        ai = status.get('ai', {})
        print(f"✓ Connected to TuneAssist {status.get('version', '')}")
        print(f"  AI provider: {ai.get('currentProvider')}")
        if ai.get('currentProvider') == 'cloud' and not ai.get('hasGeminiKey'):
            print("  ! No Gemini API key configured on the server")
        return True

    def list_scenarios(self) -> List[Dict]:
        return self._json(self._get('/api/scenarios'))['scenarios']

    def simulate(self, scenario: str, seed: Optional[int] = None) -> Dict:
        """Generate a simulated datalog on the server"""
        body = {'scenario': scenario}
        if seed is not None:
            body['seed'] = seed
        return self._json(self._post('/api/simulate', json=body))

    def upload_datalog(self, path: Path) -> Dict:
        """Validate a local datalog file on the server"""
        with open(path, 'rb') as f:
            return self._json(self._post('/api/datalog', files={'file': (Path(path).name, f, 'text/csv')}))

    def analyze(self, datalog: str, engine_type: str = 'na', engine_setup: str = '',
                turbo_setup: str = '', scenario: Optional[str] = None) -> Dict:
        body = {
            'datalog': datalog,
            'engineType': engine_type,
            'engineSetup': engine_setup,
            'turboSetup': turbo_setup,
        }
        if scenario:
            body['scenario'] = scenario
        return self._json(self._post('/api/analyze', json=body))['suggestions']

    def export_report(self, suggestions: Dict, engine_type: str = 'na',
                      base_map_name: Optional[str] = None) -> str:
        response = self._post('/api/export/report', json={
            'suggestions': suggestions,
            'engineType': engine_type,
            'baseMapName': base_map_name,
        })
        if response.status_code != 200:
            self._json(response)
        return response.text


def print_suggestions(suggestions: Dict) -> None:
    print("\n" + "="*50)
    print("AI TUNING SUGGESTIONS")
    print("="*50)
    print(f"\n{suggestions.get('summary', '')}")

    fuel = suggestions.get('fuelAdjustments') or []
    if fuel:
        print("\n⛽ Fuel Adjustments:")
        for adj in fuel:
            print(f"  • {adj.get('rpmRange')} @ {adj.get('loadCondition')}: {adj.get('suggestion')}")
            print(f"    AFR {adj.get('currentAFR', 'N/A')} -> {adj.get('targetAFR', 'N/A')}; {adj.get('reason')}")

    ignition = suggestions.get('ignitionAdjustments') or []
    if ignition:
        print("\n⚡ Ignition Adjustments:")
        for adj in ignition:
            print(f"  • {adj.get('rpmRange')} @ {adj.get('loadCondition')}: {adj.get('suggestion')}")
            print(f"    {adj.get('reason')}")

    observations = suggestions.get('otherObservations') or []
    if observations:
        print("\n📝 Other Observations:")
        for obs in observations:
            print(f"  • {obs.get('observation')}")
            print(f"    -> {obs.get('recommendation')}")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description='TuneAssist command-line client')
    ap.add_argument('--server', help='Server URL or host (default: auto-detect)')
    source = ap.add_mutually_exclusive_group()
    source.add_argument('--scenario', help='Simulate a scenario (e.g. leanWot, knockEvent)')
    source.add_argument('--datalog', type=Path, help='Hondata CSV datalog to analyze')
    ap.add_argument('--list-scenarios', action='store_true', help='List scenarios and exit')
    ap.add_argument('--engine-type', choices=['na', 'boosted'], default='na')
    ap.add_argument('--engine-setup', default='')
    ap.add_argument('--turbo-setup', default='')
    ap.add_argument('--seed', type=int, help='Seed for randomized scenarios')
    ap.add_argument('--report', type=Path, help='Write the text report to this file')
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    server_url = args.server
    if server_url and not server_url.startswith('http'):
        server_url = f"http://{server_url}:8080"

    client = TuneAssistClient(server_url)
    if not client.check_connection():
        print("\n❌ Could not connect to server")
        print("Make sure tuneassist-server is running and reachable.")
        return 1

    try:
        if args.list_scenarios:
            for s in client.list_scenarios():
                print(f"  {s['id']:<18} {s['name']}: {s['description']}")
            return 0

        if args.scenario:
            payload = client.simulate(args.scenario, seed=args.seed)
            print(f"✓ Simulated {payload['scenario']['name']} ({payload['summary']['rows']} rows)")
        elif args.datalog:
            payload = client.upload_datalog(args.datalog)
            print(f"✓ Loaded {args.datalog.name} ({payload['summary']['rows']} rows)")
        else:
            print("Nothing to analyze: pass --scenario or --datalog")
            return 2

        print("🔍 Analyzing datalog...")
        suggestions = client.analyze(payload['datalog'], args.engine_type, args.engine_setup,
                                     args.turbo_setup, scenario=args.scenario)
        print_suggestions(suggestions)

        if args.report:
            args.report.write_text(client.export_report(suggestions, args.engine_type), encoding='utf-8')
            print(f"\n✓ Report written to {args.report}")
    except ClientError as e:
        print(f"Error: {e}")
        return 1
    except OSError as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
