"""
Metainference — Trajectory Replay
=================================
Drive a bias over precomputed observables, e.g. collective variables stored
from a finished run, and collect the published components as a table.

Usage:
    bias = MetainferenceBias(config, verbose=False)
    trace = run_trajectory(bias, observables, progressbar=True)
    trace[['bias', 'sigma', 'accept']].plot()
"""

from typing import Iterable, Optional, Sequence

import numpy as np
import pandas as pd
from tqdm import tqdm

from .bias import MetainferenceBias


def run_trajectory(bias: MetainferenceBias,
                   observables: np.ndarray,
                   steps: Optional[Sequence[int]] = None,
                   exchange_steps: Iterable[int] = (),
                   progressbar: bool = False) -> pd.DataFrame:
    """Evaluate ``bias`` on every frame of ``observables``.

    Args:
        bias: Bias to drive (its sampler state carries over between frames)
        observables: [T, n] observable values, one row per step
        steps: Step index of each row (0..T-1 if None)
        exchange_steps: Steps flagged as replica-exchange steps
        progressbar: Show a tqdm progress bar

    Returns:
        DataFrame indexed by step with one column per published component,
        the ``sampled`` flag and the forces as ``force_<i>``
    """
    frames = np.atleast_2d(np.asarray(observables, dtype=float))
    if frames.shape[1] != bias.n_args:
        raise ValueError(f"Observables must be [T, {bias.n_args}], got {frames.shape}")
    if steps is None:
        steps = range(frames.shape[0])
    elif len(steps) != frames.shape[0]:
        raise ValueError(f"Got {len(steps)} steps for {frames.shape[0]} frames")
    exchange = set(exchange_steps)

    rows = []
    for step, x in tqdm(zip(steps, frames), total=frames.shape[0],
                        disable=not progressbar, desc="metainference"):
        result = bias.calculate(int(step), x, exchange_step=int(step) in exchange)
        row = dict(result.components)
        row['step'] = result.step
        row['sampled'] = result.sampled
        for i, force in enumerate(result.forces):
            row[f'force_{i}'] = force
        rows.append(row)

    trace = pd.DataFrame(rows)
    columns = ['step'] + bias.component_names + ['sampled'] + \
        [f'force_{i}' for i in range(bias.n_args)]
    return trace[columns].set_index('step')
