"""
Run log module for TuneAssist

Best-effort JSONL records of analysis requests, one file per day under
logs/analysis_runs (or TA_LOG_DIR).
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional


def logs_dir() -> Path:
    """Resolve the logs directory honoring TA_LOG_DIR, else repo logs/analysis_runs."""
    env_log_dir = os.getenv('TA_LOG_DIR')
    if env_log_dir:
        d = Path(env_log_dir)
    else:
        repo_root = Path(__file__).resolve().parents[2]
        d = repo_root / 'logs' / 'analysis_runs'
    d.mkdir(parents=True, exist_ok=True)
    return d


def log_analysis_run(record: Dict) -> None:
    """Append a single JSON record to YYYYMMDD.jsonl (best-effort)."""
    try:
        out = logs_dir() / f"{datetime.now().strftime('%Y%m%d')}.jsonl"
        with out.open('a', encoding='utf-8') as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")
    except (OSError, TypeError, ValueError):
        # Never break the API on logging errors
        pass


def iter_jsonl(path: Path) -> Iterator[Dict]:
    with path.open(encoding='utf-8') as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except ValueError:
                continue


def read_runs(date: Optional[str] = None, mode: Optional[str] = None,
              limit: int = 200) -> Dict:
    """Entries from the requested day's log (latest file when date is missing)."""
    d = logs_dir()
    files = sorted(d.glob('*.jsonl'))
    if not files:
        return {'date': None, 'count': 0, 'entries': []}

    target = None
    if date:
        cand = d / f"{date}.jsonl"
        target = cand if cand.exists() else None
    if target is None:
        target = files[-1]

    entries: List[Dict] = [
        obj for obj in iter_jsonl(target)
        if not mode or obj.get('mode') == mode
    ]
    if limit and len(entries) > limit:
        entries = entries[-limit:]
    return {'date': target.stem, 'count': len(entries), 'entries': entries}
