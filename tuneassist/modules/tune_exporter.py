"""
Tune export module for TuneAssist

Renders tuning suggestions as a plain-text report and produces the base map
(.skl) download.
"""

from datetime import datetime
from typing import Optional

from .tuning_analyzer import TuningSuggestions


DISCLAIMER = (
    'This file contains AI-generated suggestions. Review these changes carefully before '
    'applying them to your base map. Always tune on a dynamometer with a professional tuner. '
    'Use at your own risk.'
)


def report_filename(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"Hondata_AI_Suggestions_{now.strftime('%Y-%m-%d')}.txt"


def generate_report(suggestions: TuningSuggestions, engine_type: str,
                    base_map_name: Optional[str] = None,
                    now: Optional[datetime] = None) -> str:
    """Plain-text report of the suggestions; empty sections are left out."""
    now = now or datetime.now()
    lines = [
        'Hondata AI Tuning Suggestions',
        '',
        f"Generated: {now.strftime('%Y-%m-%d %H:%M:%S')}",
        f"Engine Type: {'Naturally Aspirated' if engine_type == 'na' else 'Boosted'}",
        f"Base Map: {base_map_name or 'Not provided'}",
        '',
        '--- DISCLAIMER ---',
        DISCLAIMER,
        '',
        '--- SUMMARY ---',
        suggestions.summary,
        '',
    ]

    if suggestions.fuel_adjustments:
        lines.append('--- FUEL ADJUSTMENTS ---')
        for index, adj in enumerate(suggestions.fuel_adjustments, start=1):
            lines += [
                f"{index}. RPM Range: {adj.rpm_range}",
                f"   Load: {adj.load_condition}",
                f"   Current AFR: {adj.current_afr or 'N/A'}",
                f"   Target AFR: {adj.target_afr or 'N/A'}",
                f"   Suggestion: {adj.suggestion}",
                f"   Reason: {adj.reason}",
                '',
            ]

    if suggestions.ignition_adjustments:
        lines.append('--- IGNITION ADJUSTMENTS ---')
        for index, adj in enumerate(suggestions.ignition_adjustments, start=1):
            lines += [
                f"{index}. RPM Range: {adj.rpm_range}",
                f"   Load: {adj.load_condition}",
                f"   Suggestion: {adj.suggestion}",
                f"   Reason: {adj.reason}",
                '',
            ]

    if suggestions.other_observations:
        lines.append('--- OTHER OBSERVATIONS ---')
        for index, obs in enumerate(suggestions.other_observations, start=1):
            lines += [
                f"{index}. Observation: {obs.observation}",
                f"   Recommendation: {obs.recommendation}",
                '',
            ]

    return '\n'.join(lines)


def apply_suggestions_to_skl(data: bytes, suggestions: TuningSuggestions) -> bytes:
    """
    Produce the "modified" base map for download.

    The .skl layout is proprietary and table editing is not implemented, so the
    original bytes are returned unchanged.
    """
    # TODO: locate the fuel and ignition tables in the .skl layout and apply the adjustments
    return bytes(data)
