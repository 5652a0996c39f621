"""
Datalog parser module for TuneAssist

Validates and parses Hondata SManager CSV datalog exports into typed rows.
Rows without a running engine (missing or non-positive RPM) are dropped,
malformed CSV surfaces as a ParseError with the first diagnostic.
"""

import csv
import io
import math
from typing import Dict, List, Optional


# Required header tokens; presence is checked as a plain substring
REQUIRED_TOKENS = ('RPM', 'MAP')

# Known channel columns exactly as SManager names them
TIME_COLUMN = 'Time'
RPM_COLUMN = 'RPM'
MAP_COLUMN = 'MAP'
AFR_COLUMN = 'AFR'
IGNITION_COLUMN = 'Ignition Total'
INJECTOR_DUTY_COLUMN = 'Injector Duty'

INVALID_DATALOG_HINT = (
    'Invalid CSV. Ensure it is a valid Hondata datalog export with RPM and MAP columns.'
)


class DatalogError(ValueError):
    """Base class for datalog validation failures"""


class FormatError(DatalogError):
    """Required RPM/MAP header tokens are absent"""

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(
            f"not a recognized datalog export (missing {', '.join(self.missing)})"
        )


class ParseError(DatalogError):
    """CSV body could not be tokenized into the header's row shape"""

    def __init__(self, diagnostic: str):
        self.diagnostic = diagnostic
        super().__init__(diagnostic)


class DatalogRow:
    """One logged sample: open channel mapping plus typed accessors for known channels."""

    def __init__(self, channels: Dict[str, Optional[float]]):
        self.channels = dict(channels)

    def get(self, name: str, default=None):
        value = self.channels.get(name)
        return default if value is None else value

    @property
    def time(self) -> Optional[float]:
        return self.channels.get(TIME_COLUMN)

    @property
    def rpm(self) -> Optional[int]:
        value = self.channels.get(RPM_COLUMN)
        if value is None:
            return None
        # round half-up
        return int(math.floor(value + 0.5))

    @property
    def map(self) -> Optional[float]:
        return self.channels.get(MAP_COLUMN)

    @property
    def afr(self) -> Optional[float]:
        return self.channels.get(AFR_COLUMN)

    @property
    def ignition_total(self) -> Optional[float]:
        return self.channels.get(IGNITION_COLUMN)

    @property
    def injector_duty(self) -> Optional[float]:
        return self.channels.get(INJECTOR_DUTY_COLUMN)

    @property
    def is_valid(self) -> bool:
        value = self.channels.get(RPM_COLUMN)
        return value is not None and value > 0

    def to_dict(self) -> Dict[str, Optional[float]]:
        return dict(self.channels)

    def __eq__(self, other):
        if not isinstance(other, DatalogRow):
            return NotImplemented
        return self.channels == other.channels

    def __repr__(self):
        return f"DatalogRow({self.channels!r})"


def _coerce_cell(raw: str) -> Optional[float]:
    """Convert a CSV cell to a number; empty or non-numeric cells are absent."""
    cell = raw.strip().strip('"')
    if not cell:
        return None
    try:
        return int(cell)
    except ValueError:
        pass
    try:
        number = float(cell)
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def check_required_headers(text: str) -> None:
    """Raise FormatError unless every required token occurs somewhere in the text."""
    missing = [token for token in REQUIRED_TOKENS if token not in (text or '')]
    if missing:
        raise FormatError(missing)


def parse_rows(text: str) -> List[DatalogRow]:
    """Parse CSV text into rows aligned to the header, without filtering."""
    reader = csv.reader(io.StringIO(text), strict=True, skipinitialspace=True)
    header: Optional[List[str]] = None
    rows: List[DatalogRow] = []

    try:
        for record in reader:
            if not record:
                continue  # blank line
            if header is None:
                header = [name.strip().strip('"') for name in record]
                continue
            if len(record) != len(header):
                raise ParseError(
                    f"Row {reader.line_num}: expected {len(header)} fields, found {len(record)}"
                )
            rows.append(DatalogRow({
                name: _coerce_cell(value) for name, value in zip(header, record)
            }))
    except csv.Error as e:
        raise ParseError(f"Row {reader.line_num}: {e}") from e

    return rows


def validate_datalog(text: str) -> List[DatalogRow]:
    """
    Validate and parse a datalog export.

    Args:
        text: Full CSV document including its header line

    Returns:
        Rows with RPM > 0, in input order

    Raises:
        FormatError: RPM or MAP header token is missing (checked before parsing)
        ParseError: a data line is malformed or does not match the header width
    """
    check_required_headers(text)
    return [row for row in parse_rows(text) if row.is_valid]


def _present(values) -> List[float]:
    return [v for v in values if v is not None]


def summarize_datalog(rows: List[DatalogRow]) -> Dict:
    """Headline numbers for display next to the chart."""
    rpm = _present(r.rpm for r in rows)
    afr = _present(r.afr for r in rows)
    ignition = _present(r.ignition_total for r in rows)
    duty = _present(r.injector_duty for r in rows)
    times = _present(r.time for r in rows)

    channels: List[str] = []
    for r in rows:
        for name in r.channels:
            if name not in channels:
                channels.append(name)

    return {
        'rows': len(rows),
        'channels': channels,
        'rpm_min': min(rpm) if rpm else None,
        'rpm_max': max(rpm) if rpm else None,
        'afr_min': min(afr) if afr else None,
        'afr_max': max(afr) if afr else None,
        'ignition_min': min(ignition) if ignition else None,
        'ignition_max': max(ignition) if ignition else None,
        'injector_duty_max': max(duty) if duty else None,
        'duration_sec': round(max(times) - min(times), 3) if times else None,
    }


def chart_series(rows: List[DatalogRow]) -> List[Dict]:
    """Points for the RPM-vs-AFR/MAP/ignition chart."""
    return [
        {
            'RPM': r.rpm,
            'AFR': r.afr,
            'MAP': r.map,
            'Ignition': r.ignition_total,
        }
        for r in rows
    ]
