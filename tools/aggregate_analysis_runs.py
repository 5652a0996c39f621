#!/usr/bin/env python3
"""
Aggregate JSONL logs from logs/analysis_runs and print a simple leaderboard.

Usage:
  python3 tools/aggregate_analysis_runs.py [--date YYYYMMDD]
"""
import argparse
from collections import Counter, defaultdict

from tuneassist.modules.run_log import iter_jsonl, logs_dir


def pct(a, b):
    return 0.0 if b == 0 else 100.0 * a / b


def passed(record: dict) -> bool:
    """Suite runs carry an eval verdict; server analysis runs carry a result."""
    if 'eval' in record:
        return bool(record['eval'].get('pass'))
    return bool((record.get('result') or {}).get('success'))


def summarize(records):
    """Per-mode and per-model/scenario pass counts."""
    by_mode = defaultdict(list)
    for r in records:
        by_mode[r.get('mode', 'unknown')].append(r)

    modes = {}
    for mode, items in by_mode.items():
        durations = [
            (x.get('result') or x.get('eval') or {}).get('duration_sec') or 0.0
            for x in items
        ]
        modes[mode] = {
            'total': len(items),
            'pass': sum(1 for x in items if passed(x)),
            'avg_duration': (sum(durations) / len(durations)) if durations else 0.0,
        }

    models = Counter()
    model_pass = Counter()
    scenarios = Counter()
    scenario_pass = Counter()
    for r in records:
        model = (r.get('server') or {}).get('model') or 'unknown'
        models[model] += 1
        scenario = (r.get('request') or {}).get('scenario') or (r.get('case') or {}).get('scenario')
        ok = passed(r)
        if ok:
            model_pass[model] += 1
        if scenario:
            scenarios[scenario] += 1
            if ok:
                scenario_pass[scenario] += 1

    return {
        'modes': modes,
        'models': {m: (model_pass[m], n) for m, n in models.items()},
        'scenarios': {s: (scenario_pass[s], n) for s, n in scenarios.items()},
    }


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument('--date', help='YYYYMMDD file; default: latest file')
    args = ap.parse_args()

    d = logs_dir()
    files = sorted(d.glob('*.jsonl'))
    if not files:
        print('No logs found in', d)
        return
    target = None
    if args.date:
        cand = d / f"{args.date}.jsonl"
        target = cand if cand.exists() else None
    if target is None:
        target = files[-1]

    print('Aggregating:', target)
    records = list(iter_jsonl(target))
    if not records:
        print('No records')
        return

    stats = summarize(records)
    for mode, s in stats['modes'].items():
        print(f"\n== Mode: {mode} ==")
        print(f"total: {s['total']}, pass: {s['pass']} ({pct(s['pass'], s['total']):.1f}%), "
              f"avg_duration: {s['avg_duration']:.2f}s")

    print('\nBy model:')
    for model, (p, n) in stats['models'].items():
        print(f"  {model}: {p}/{n} ({pct(p, n):.1f}%)")

    if stats['scenarios']:
        print('\nBy scenario:')
        for scenario, (p, n) in stats['scenarios'].items():
            print(f"  {scenario}: {p}/{n} ({pct(p, n):.1f}%)")


if __name__ == '__main__':
    main()
