"""
TuneAssist Tuning Analyzer - AI datalog analysis into structured tuning suggestions

This module builds the analysis prompt from a datalog plus the user's hardware
context, sends it to the configured LLM and parses the (often messy) JSON reply
into fuel/ignition adjustments and general observations.
"""

import json
import os
import re
from pathlib import Path
from typing import Dict, List, Optional

from .llm_interface import LLMInterface


ENGINE_TYPES = ('na', 'boosted')

SUGGESTIONS_SCHEMA = '''{
    "summary": "string",
    "fuelAdjustments": [{ "rpmRange": "string", "loadCondition": "string", "currentAFR": "string", "targetAFR": "string", "suggestion": "string", "reason": "string" }],
    "ignitionAdjustments": [{ "rpmRange": "string", "loadCondition": "string", "suggestion": "string", "reason": "string" }],
    "otherObservations": [{ "observation": "string", "recommendation": "string" }]
}'''

FALLBACK_TEMPLATE = (
    "Analyze this {{ENGINE_TYPE}} engine datalog and reply with JSON matching {{SCHEMA}}.\n"
    "Engine Setup: {{ENGINE_SETUP}}\nTurbo Setup: {{TURBO_SETUP}}\n\n{{DATALOG}}"
)


class AnalysisError(ValueError):
    """Model reply could not be turned into tuning suggestions"""


class Adjustment:
    """A fuel or ignition change for an RPM range / load condition."""
    def __init__(self, rpm_range: str, load_condition: str, suggestion: str, reason: str,
                 current_afr: Optional[str] = None, target_afr: Optional[str] = None):
        self.rpm_range = rpm_range
        self.load_condition = load_condition
        self.suggestion = suggestion
        self.reason = reason
        self.current_afr = current_afr  # fuel adjustments only
        self.target_afr = target_afr

    @classmethod
    def from_dict(cls, obj: Dict) -> 'Adjustment':
        return cls(
            rpm_range=str(obj.get('rpmRange', '')),
            load_condition=str(obj.get('loadCondition', '')),
            suggestion=str(obj.get('suggestion', '')),
            reason=str(obj.get('reason', '')),
            current_afr=_optional_str(obj.get('currentAFR')),
            target_afr=_optional_str(obj.get('targetAFR')),
        )

    def to_dict(self) -> Dict:
        out = {
            'rpmRange': self.rpm_range,
            'loadCondition': self.load_condition,
            'suggestion': self.suggestion,
            'reason': self.reason,
        }
        if self.current_afr is not None:
            out['currentAFR'] = self.current_afr
        if self.target_afr is not None:
            out['targetAFR'] = self.target_afr
        return out


class Observation:
    def __init__(self, observation: str, recommendation: str):
        self.observation = observation
        self.recommendation = recommendation

    @classmethod
    def from_dict(cls, obj: Dict) -> 'Observation':
        return cls(
            observation=str(obj.get('observation', '')),
            recommendation=str(obj.get('recommendation', '')),
        )

    def to_dict(self) -> Dict:
        return {'observation': self.observation, 'recommendation': self.recommendation}


class TuningSuggestions:
    """Structured result of one analysis request."""
    def __init__(self, summary: str, fuel_adjustments: List[Adjustment] = None,
                 ignition_adjustments: List[Adjustment] = None,
                 other_observations: List[Observation] = None):
        self.summary = summary
        self.fuel_adjustments = fuel_adjustments or []
        self.ignition_adjustments = ignition_adjustments or []
        self.other_observations = other_observations or []

    @classmethod
    def from_dict(cls, data: Dict) -> 'TuningSuggestions':
        def items(key):
            value = data.get(key)
            return [obj for obj in value if isinstance(obj, dict)] if isinstance(value, list) else []

        return cls(
            summary=str(data.get('summary', '')),
            fuel_adjustments=[Adjustment.from_dict(o) for o in items('fuelAdjustments')],
            ignition_adjustments=[Adjustment.from_dict(o) for o in items('ignitionAdjustments')],
            other_observations=[Observation.from_dict(o) for o in items('otherObservations')],
        )

    def to_dict(self) -> Dict:
        return {
            'summary': self.summary,
            'fuelAdjustments': [a.to_dict() for a in self.fuel_adjustments],
            'ignitionAdjustments': [a.to_dict() for a in self.ignition_adjustments],
            'otherObservations': [o.to_dict() for o in self.other_observations],
        }


def _optional_str(value) -> Optional[str]:
    if value is None or value == '':
        return None
    return str(value)


class TemplateLoader:
    """Handles template loading and rendering with mustache-like syntax."""

    @staticmethod
    def load_template(kind: str, variant: Optional[str] = None) -> str:
        """Load template with variant-specific fallback."""
        base_dir = os.getenv('TA_PROMPT_DIR')
        search_dirs = []
        if base_dir:
            search_dirs.append(Path(base_dir))
        search_dirs.append(Path(__file__).parent.parent / 'prompts')

        names = []
        if variant:
            names.append(f"{kind}.{variant}.txt")
        names.append(f"{kind}.base.txt")

        for d in search_dirs:
            for name in names:
                p = d / name
                if p.exists():
                    try:
                        return p.read_text(encoding='utf-8')
                    except OSError:
                        continue
        return FALLBACK_TEMPLATE

    @staticmethod
    def render_template(tpl: str, ctx: Dict[str, str]) -> str:
        """Render template with mustache-like conditional blocks and replacements."""
        def toggle_block(text: str, key: str, value: str) -> str:
            start = f"{{{{#{key}}}}}"
            end = f"{{{{/{key}}}}}"
            while True:
                i = text.find(start)
                if i == -1:
                    break
                j = text.find(end, i)
                if j == -1:
                    break
                inner = text[i + len(start): j]
                replacement = inner if value else ''
                text = text[:i] + replacement + text[j + len(end):]
            return text

        out = tpl
        for k, v in ctx.items():
            out = toggle_block(out, k, v or '')
        # DATALOG goes last so CSV content is never treated as a placeholder
        for k, v in ctx.items():
            if k != 'DATALOG':
                out = out.replace(f"{{{{{k}}}}}", v or '')
        if 'DATALOG' in ctx:
            out = out.replace('{{DATALOG}}', ctx['DATALOG'] or '')
        return out


def build_prompt(datalog: str, engine_type: str = 'na', engine_setup: str = '',
                 turbo_setup: str = '') -> str:
    """Render the analysis prompt for a datalog and the user's hardware."""
    if engine_type not in ENGINE_TYPES:
        raise ValueError(f"Invalid engine type: {engine_type}")
    boosted = engine_type == 'boosted'
    if not turbo_setup:
        turbo_setup = 'Boosted setup not specified.' if boosted else 'Naturally Aspirated.'

    tpl = TemplateLoader.load_template('analyze', variant=engine_type)
    ctx = {
        'ENGINE_TYPE': 'Boosted (Forced Induction)' if boosted else 'Naturally Aspirated',
        'TARGET_AFR_WOT': '11.0-11.5' if boosted else '12.8-13.2',
        'ENGINE_SETUP': engine_setup or 'Not specified.',
        'TURBO_SETUP': turbo_setup,
        'SCHEMA': SUGGESTIONS_SCHEMA,
        'DATALOG': datalog.strip(),
    }
    return TemplateLoader.render_template(tpl, ctx)


def extract_json(text: str) -> str:
    """Pull the JSON object out of a reply that may be fenced or wrapped in prose."""
    fenced = re.search(r"```(?:json)?\s*(.*?)\s*```", text, re.DOTALL | re.IGNORECASE)
    if fenced and fenced.group(1).lstrip().startswith('{'):
        return fenced.group(1)

    first = text.find('{')
    last = text.rfind('}')
    if first != -1 and last > first:
        return text[first:last + 1]
    return text


def _balanced_objects(text: str) -> List[Dict]:
    """Curly-brace balanced objects found in text."""
    found = []
    buf = []
    depth = 0
    for ch in text:
        if ch == '{':
            depth += 1
        if depth > 0:
            buf.append(ch)
        if ch == '}' and depth > 0:
            depth -= 1
            if depth == 0:
                try:
                    obj = json.loads(''.join(buf))
                    if isinstance(obj, dict):
                        found.append(obj)
                except ValueError:
                    pass
                buf = []
    return found


def parse_suggestions(response: str) -> TuningSuggestions:
    """Parse an LLM reply into TuningSuggestions (tolerant of fences and prose)."""
    text = (response or '').strip()
    if not text:
        raise AnalysisError('AI response was empty.')

    data = None
    # 1) Direct JSON parse
    try:
        data = json.loads(text)
    except ValueError:
        pass

    # 2) Fenced block or outermost braces
    if not isinstance(data, dict):
        try:
            data = json.loads(extract_json(text))
        except ValueError:
            data = None

    # 3) First balanced object that looks like a suggestions payload
    if not isinstance(data, dict):
        for obj in _balanced_objects(text):
            if 'summary' in obj or 'error' in obj:
                data = obj
                break

    if not isinstance(data, dict):
        raise AnalysisError('AI response was invalid or could not be parsed even after cleaning.')
    if data.get('error'):
        raise AnalysisError(str(data['error']))
    if not any(k in data for k in ('summary', 'fuelAdjustments', 'ignitionAdjustments', 'otherObservations')):
        raise AnalysisError('AI response did not contain tuning suggestions.')
    return TuningSuggestions.from_dict(data)


class TuningAnalyzer:
    """Run a datalog through the configured LLM and return structured suggestions."""

    def __init__(self, llm_interface: LLMInterface):
        """Initialize with LLM interface dependency."""
        self.llm_interface = llm_interface

    def analyze(self, datalog: str, engine_type: str = 'na', engine_setup: str = '',
                turbo_setup: str = '', temperature: float = 0.2) -> TuningSuggestions:
        prompt = build_prompt(datalog, engine_type, engine_setup, turbo_setup)
        raw = self.llm_interface.get_response(prompt, temperature=temperature, json_mode=True)
        return parse_suggestions(raw)
