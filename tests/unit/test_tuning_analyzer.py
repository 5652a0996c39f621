"""
TuningAnalyzer tests

Tests cover:
- Prompt rendering per engine type
- JSON extraction from fenced and prose-wrapped replies
- Error payloads and unusable replies
- End-to-end analyze() with a stubbed LLM
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from tuneassist.modules.llm_interface import LLMInterface
from tuneassist.modules.tuning_analyzer import (AnalysisError, TemplateLoader, TuningAnalyzer,
                                                TuningSuggestions, build_prompt, extract_json,
                                                parse_suggestions)


DATALOG = 'Time,RPM,MAP,AFR\n0.0,3000,14.5,14.2\n'

REPLY = {
    "summary": "Lean at the top end.",
    "fuelAdjustments": [{
        "rpmRange": "6000-7500",
        "loadCondition": "WOT",
        "currentAFR": "14.5",
        "targetAFR": "12.8",
        "suggestion": "Add 8% fuel",
        "reason": "Dangerously lean",
    }],
    "ignitionAdjustments": [],
    "otherObservations": [{"observation": "IDC 85%", "recommendation": "Monitor injectors"}],
}


class TestBuildPrompt:

    def test_na_prompt(self):
        prompt = build_prompt(DATALOG, 'na', 'K20A2', '')
        assert 'Naturally Aspirated' in prompt
        assert '12.8-13.2' in prompt
        assert 'K20A2' in prompt
        assert DATALOG.strip() in prompt
        assert '"fuelAdjustments"' in prompt
        assert '{{' not in prompt

    def test_boosted_prompt(self):
        prompt = build_prompt(DATALOG, 'boosted', '', 'GT3076R 10psi')
        assert 'Boosted' in prompt
        assert '11.0-11.5' in prompt
        assert 'GT3076R 10psi' in prompt
        assert 'Not specified.' in prompt

    def test_invalid_engine_type(self):
        with pytest.raises(ValueError):
            build_prompt(DATALOG, 'electric')

    def test_datalog_is_not_treated_as_template(self):
        tricky = 'RPM,MAP\n3000,{{ENGINE_TYPE}}\n'
        prompt = build_prompt(tricky, 'na')
        assert '3000,{{ENGINE_TYPE}}' in prompt

    def test_prompt_dir_override(self, monkeypatch, tmp_path):
        (tmp_path / 'analyze.base.txt').write_text('custom {{ENGINE_TYPE}}{{#TURBO_SETUP}} turbo{{/TURBO_SETUP}}')
        monkeypatch.setenv('TA_PROMPT_DIR', str(tmp_path))
        assert build_prompt(DATALOG, 'na') == 'custom Naturally Aspirated turbo'

    def test_render_template_blocks(self):
        tpl = 'a{{#X}}[{{X}}]{{/X}}b'
        assert TemplateLoader.render_template(tpl, {'X': 'v'}) == 'a[v]b'
        assert TemplateLoader.render_template(tpl, {'X': ''}) == 'ab'


class TestParseSuggestions:

    def test_plain_json(self):
        s = parse_suggestions(json.dumps(REPLY))
        assert isinstance(s, TuningSuggestions)
        assert s.summary == 'Lean at the top end.'
        assert s.fuel_adjustments[0].target_afr == '12.8'
        assert s.other_observations[0].recommendation == 'Monitor injectors'
        assert s.to_dict() == REPLY

    def test_fenced_json(self):
        text = "Here you go:\n```json\n" + json.dumps(REPLY) + "\n```\nGood luck!"
        assert parse_suggestions(text).summary == 'Lean at the top end.'

    def test_prose_wrapped_json(self):
        text = "Analysis complete. " + json.dumps(REPLY) + " Let me know."
        assert len(parse_suggestions(text).fuel_adjustments) == 1

    def test_balanced_object_fallback(self):
        text = 'noise {bad json} then {"summary": "ok"} trailing {'
        assert parse_suggestions(text).summary == 'ok'

    def test_extract_json(self):
        assert extract_json('```\n{"a": 1}\n```') == '{"a": 1}'
        assert extract_json('x {"a": {"b": 2}} y') == '{"a": {"b": 2}}'
        assert extract_json('no braces') == 'no braces'

    def test_missing_sections_default_to_empty(self):
        s = parse_suggestions('{"summary": "All good"}')
        assert s.fuel_adjustments == []
        assert s.ignition_adjustments == []

    def test_error_payload(self):
        with pytest.raises(AnalysisError, match='quota'):
            parse_suggestions('{"error": "quota exceeded"}')

    @pytest.mark.parametrize('text', ['', '   ', 'I cannot help with that.', '{"foo": 1}', '[1, 2]'])
    def test_unusable_replies(self, text):
        with pytest.raises(AnalysisError):
            parse_suggestions(text)

    def test_ignition_adjustment_has_no_afr_keys(self):
        s = TuningSuggestions.from_dict({
            'summary': 's',
            'ignitionAdjustments': [{'rpmRange': '5400-5800', 'loadCondition': 'WOT',
                                     'suggestion': 'Remove 2 deg', 'reason': 'Knock'}],
        })
        assert 'currentAFR' not in s.to_dict()['ignitionAdjustments'][0]


class TestTuningAnalyzer:

    def test_analyze_uses_json_mode(self):
        llm = MagicMock(spec=LLMInterface)
        llm.get_response.return_value = json.dumps(REPLY)
        result = TuningAnalyzer(llm).analyze(DATALOG, 'boosted', 'K24', '10psi')
        assert result.summary == REPLY['summary']
        args, kwargs = llm.get_response.call_args
        assert kwargs['json_mode'] is True
        assert kwargs['temperature'] == 0.2
        assert '11.0-11.5' in args[0]

    def test_analyze_propagates_parse_failure(self):
        with patch.object(LLMInterface, 'get_response', return_value='not json at all'):
            with pytest.raises(AnalysisError):
                TuningAnalyzer(LLMInterface()).analyze(DATALOG)
