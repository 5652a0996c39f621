"""
Scenario simulator module for TuneAssist

Synthesizes SManager-style CSV datalogs for a fixed set of fault scenarios so
the analysis pipeline can be exercised without a car on the dyno. Output uses
the same header and column order the datalog parser accepts.
"""

import math
import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional


CSV_HEADER = 'Time,RPM,MAP,AFR,"Ignition Total","Injector Duty"'

# Knock window on the unrounded RPM sweep, exclusive bounds
KNOCK_RPM_LOW = 5400
KNOCK_RPM_HIGH = 5800
KNOCK_RETARD_DEG = 6.0


class UnknownScenarioError(ValueError):
    """Requested scenario id is not one of the defined scenarios"""


@dataclass(frozen=True)
class ScenarioDescriptor:
    id: str
    name: str
    description: str
    sample_count: int

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'sample_count': self.sample_count,
        }


LEAN_WOT = ScenarioDescriptor(
    'leanWideOpenThrottle', 'Lean WOT Pull',
    'Simulates a WOT run with a dangerously lean air-fuel ratio.', 101,
)
RICH_CRUISE = ScenarioDescriptor(
    'richCruise', 'Rich Cruise',
    'Simulates steady cruising with an excessively rich mixture.', 51,
)
HIGH_INJECTOR_DUTY = ScenarioDescriptor(
    'highInjectorDuty', 'High Injector Duty',
    'Simulates a high-RPM pull where injectors are maxed out.', 81,
)
KNOCK_EVENT = ScenarioDescriptor(
    'knockEvent', 'Potential Knock Event',
    'Simulates a timing drop characteristic of a knock event.', 61,
)

SCENARIOS: Dict[str, ScenarioDescriptor] = {
    s.id: s for s in (LEAN_WOT, RICH_CRUISE, HIGH_INJECTOR_DUTY, KNOCK_EVENT)
}

# Short ids used by earlier builds of the UI
SCENARIO_ALIASES = {
    'leanWot': LEAN_WOT.id,
    'highDuty': HIGH_INJECTOR_DUTY.id,
    'knock': KNOCK_EVENT.id,
}


def list_scenarios() -> List[ScenarioDescriptor]:
    return list(SCENARIOS.values())


def resolve_scenario(scenario_id: str) -> ScenarioDescriptor:
    key = SCENARIO_ALIASES.get(scenario_id, scenario_id)
    try:
        return SCENARIOS[key]
    except KeyError:
        raise UnknownScenarioError(
            f"Unknown scenario '{scenario_id}'. Expected one of: {', '.join(SCENARIOS)}"
        ) from None


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_row(time: float, rpm: int, map_value: float, afr: float,
               ignition: float, injector_duty: float) -> str:
    """One CSV line at each column's logging resolution."""
    return (
        f"{time:.3f},{rpm},{map_value:.2f},{afr:.2f},"
        f"{ignition:.1f},{injector_duty:.1f}"
    )


def _progress(index: int, sample_count: int) -> float:
    return index / (sample_count - 1)


def _lean_wot(rng: random.Random) -> List[str]:
    lines = []
    for i in range(LEAN_WOT.sample_count):
        p = _progress(i, LEAN_WOT.sample_count)
        lines.append(format_row(
            time=5 * p,
            rpm=_round_half_up(2500 + 5000 * p),
            map_value=14.5,  # boosted WOT
            afr=12.5 + 2 * p,
            ignition=20 - 5 * p,
            injector_duty=40 + 45 * p,
        ))
    return lines


def _rich_cruise(rng: random.Random) -> List[str]:
    lines = []
    for i in range(RICH_CRUISE.sample_count):
        lines.append(format_row(
            time=0.1 * i,
            rpm=3000 + _round_half_up((rng.random() - 0.5) * 50),
            map_value=-8.5,  # cruise vacuum
            afr=12.8 + (rng.random() - 0.5) * 0.5,
            ignition=38,
            injector_duty=15,
        ))
    return lines


def _high_injector_duty(rng: random.Random) -> List[str]:
    lines = []
    for i in range(HIGH_INJECTOR_DUTY.sample_count):
        p = _progress(i, HIGH_INJECTOR_DUTY.sample_count)
        lines.append(format_row(
            time=4 * p,
            rpm=_round_half_up(5000 + 3500 * p),
            map_value=15.0,
            afr=11.5,
            ignition=18,
            injector_duty=75 + 24 * p,
        ))
    return lines


def knock_ignition(progress: float, rpm: float) -> float:
    """Ignition advance for the knock sweep, retarded inside the knock window."""
    ignition = 25 + 5 * progress
    if KNOCK_RPM_LOW < rpm < KNOCK_RPM_HIGH:
        ignition -= KNOCK_RETARD_DEG
    return ignition


def _knock_event(rng: random.Random) -> List[str]:
    lines = []
    for i in range(KNOCK_EVENT.sample_count):
        p = _progress(i, KNOCK_EVENT.sample_count)
        rpm = 4000 + 2500 * p
        lines.append(format_row(
            time=3 * p,
            rpm=_round_half_up(rpm),
            map_value=12.0,
            afr=11.8,
            ignition=knock_ignition(p, rpm),
            injector_duty=60 + 20 * p,
        ))
    return lines


_GENERATORS: Dict[str, Callable[[random.Random], List[str]]] = {
    LEAN_WOT.id: _lean_wot,
    RICH_CRUISE.id: _rich_cruise,
    HIGH_INJECTOR_DUTY.id: _high_injector_duty,
    KNOCK_EVENT.id: _knock_event,
}


def generate_simulated_datalog(scenario: str, seed: Optional[int] = None,
                               rng: Optional[random.Random] = None) -> str:
    """
    Generate a simulated datalog CSV for a scenario.

    Args:
        scenario: Scenario id (or one of its short aliases)
        seed: Seed for the jitter source when no rng is given
        rng: Explicit random source; takes precedence over seed

    Returns:
        CSV text with header line followed by one line per sample
    """
    descriptor = resolve_scenario(scenario)
    if rng is None:
        rng = random.Random(seed)
    lines = _GENERATORS[descriptor.id](rng)
    return '\n'.join([CSV_HEADER] + lines)
