"""Export functionality for CSV and JSON."""

import json
from dataclasses import asdict

import pandas as pd

from ..simulation.runner import SimulationResult
from ..venues.tokens import from_units

BALANCE_COLUMNS = (
    'unstaked', 'staked', 'warmup', 'rebase_bonded',
    'pending_payout', 'reserves', 'total_balance',
)


def _state_row(state) -> dict:
    row = asdict(state)
    for column in BALANCE_COLUMNS:
        row[column] = from_units(row[column])
    return row


def results_frame(result: SimulationResult) -> pd.DataFrame:
    """One row per recorded step: balance buckets (whole tokens) plus metrics."""
    data = []
    for i, state in enumerate(result.states):
        row = _state_row(state)
        if i < len(result.metrics_over_time):
            row.update(result.metrics_over_time[i])
        data.append(row)
    return pd.DataFrame(data)


def events_frame(result: SimulationResult) -> pd.DataFrame:
    return pd.DataFrame([
        {'block': e.block, 'source': e.source, 'name': e.name, 'args': json.dumps(e.args, default=str)}
        for e in result.events
    ])


def export_csv(result: SimulationResult, filepath: str):
    """Export simulation results to CSV."""
    results_frame(result).to_csv(filepath, index=False)


def export_json(result: SimulationResult, filepath: str):
    """Export simulation results to JSON."""
    export_data = {
        'config': result.config.to_dict(),
        'config_hash': result.config.compute_hash(),
        'states': [_state_row(state) for state in result.states],
        'metrics_over_time': result.metrics_over_time,
        'final_metrics': result.final_metrics,
        'events': [
            {'block': e.block, 'source': e.source, 'name': e.name, 'args': list(e.args)}
            for e in result.events
        ],
        'conservation_errors': result.conservation_errors,
        'failed_actions': result.failed_actions,
    }

    with open(filepath, 'w') as f:
        json.dump(export_data, f, indent=2, default=str)
