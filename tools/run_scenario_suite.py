#!/usr/bin/env python3
"""
Run a YAML scenario suite against a live TuneAssist server and log results to JSONL.

Each case simulates a scenario, asks for an analysis and checks the reply
against the case's regex expectations.

Usage:
  python3 tools/run_scenario_suite.py --base-url http://localhost:8080 \
    --cases tests/prompts/scenarios.yaml --tag quick | tee /tmp/scenario_suite.log
"""
import argparse
import json
import re
import time
from datetime import datetime
from pathlib import Path

import requests
import yaml

from tuneassist.modules.run_log import log_analysis_run


def load_cases(path: Path):
    with path.open(encoding='utf-8') as f:
        return yaml.safe_load(f) or []


def suggestions_text(suggestions: dict) -> str:
    """Flatten the suggestion payload into one searchable string."""
    parts = [suggestions.get('summary', '')]
    for key in ('fuelAdjustments', 'ignitionAdjustments', 'otherObservations'):
        for item in suggestions.get(key) or []:
            parts.extend(str(v) for v in item.values())
    return '\n'.join(parts)


def evaluate(case: dict, text: str) -> dict:
    exp = case.get('expect_any') or []
    for pat in exp:
        if re.search(pat, text, flags=re.IGNORECASE):
            return {'pass': True, 'matched': pat}
    return {'pass': not exp, 'matched': None}


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument('--base-url', default='http://localhost:8080')
    ap.add_argument('--cases', default=str(Path(__file__).resolve().parents[1] / 'tests' / 'prompts' / 'scenarios.yaml'))
    ap.add_argument('--tag', default='suite')
    ap.add_argument('--timeout', type=float, default=300.0)
    args = ap.parse_args()

    status = requests.get(f"{args.base_url}/api/status", timeout=10).json()
    print("Server status:")
    print(json.dumps(status, indent=2))

    results = []
    for case in load_cases(Path(args.cases)):
        cid = case.get('id')
        print(f"\n== Case {cid} ({case['scenario']}) ==")
        sim = requests.post(f"{args.base_url}/api/simulate",
                            json={'scenario': case['scenario'], 'seed': case.get('seed')},
                            timeout=args.timeout).json()
        if not sim.get('success'):
            print(f"Simulation failed: {sim.get('error')}")
            continue

        start = time.time()
        r = requests.post(f"{args.base_url}/api/analyze", json={
            'datalog': sim['datalog'],
            'engineType': case.get('engine_type', 'na'),
            'engineSetup': case.get('engine_setup', ''),
            'turboSetup': case.get('turbo_setup', ''),
            'scenario': case['scenario'],
        }, timeout=args.timeout)
        data = r.json()
        text = suggestions_text(data.get('suggestions') or {}) if data.get('success') else ''
        verdict = evaluate(case, text)

        rec = {
            'mode': 'scenario_suite',
            'timestamp': datetime.now().isoformat(),
            'case': case,
            'server': {
                'provider': status.get('ai', {}).get('currentProvider'),
                'model': status.get('ai', {}).get('localModel'),
            },
            'response': data,
            'eval': dict(verdict, tokens_est=len(text.split()),
                         duration_sec=round(time.time() - start, 2)),
            'tag': args.tag,
        }
        log_analysis_run(rec)
        results.append(rec)
        print(json.dumps(rec['eval'], indent=2))

    # Summary
    total = len(results)
    passed = sum(1 for r in results if r['eval']['pass'])
    if total:
        print(f"\nSummary: {passed}/{total} passed ({(passed/total*100):.1f}%)")
    else:
        print("\nSummary: no cases ran")


if __name__ == '__main__':
    main()
