"""
Metainference — Trace Diagnostics
=================================
Summaries of the sampled noise parameters recorded along a run.

Key Features:
- Effective sample size and autocorrelation time (ArviZ)
- Posterior summaries with HDI credible intervals and R-hat
- Trace plots of the published components

Usage:
    trace = run_trajectory(bias, observables)
    summary = summarize_trace(trace, burn_in=100)
    print(summary['sigma']['ci_lower'], summary['sigma']['ci_upper'])
    plot_trace(trace, save_path='metainference')

Requires the ``diagnostics`` extra: pip install metainference-bias[diagnostics]

License: MIT
"""

import warnings
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

try:
    import arviz as az
    ARVIZ_AVAILABLE = True
except ImportError:
    ARVIZ_AVAILABLE = False
    az = None
    warnings.warn("[WARNING] ArviZ not installed. Install with: pip install arviz")

try:
    import matplotlib.pyplot as plt
    import seaborn as sns
    PLOTTING_AVAILABLE = True
    sns.set_style('whitegrid')
except ImportError:
    PLOTTING_AVAILABLE = False


def _require_arviz():
    if not ARVIZ_AVAILABLE:
        raise ImportError("ArviZ required. Install with: pip install arviz")


def _as_dataset(columns: Dict[str, np.ndarray]):
    # one chain per component: (chain, draw)
    return az.convert_to_dataset({name: values[None, :] for name, values in columns.items()})


def effective_sample_size(series: Sequence[float], method: str = 'bulk') -> float:
    """ArviZ effective sample size of a single-chain 1D series.

    A constant series (a pinned sigma, MC_STEPS=0) counts every sample.
    """
    _require_arviz()
    x = np.asarray(series, dtype=float)
    if x.size == 0:
        raise ValueError("Cannot compute the ESS of an empty series")
    if np.ptp(x) == 0.0:
        return float(x.size)
    ess = az.ess(_as_dataset({'x': x}), method=method)
    return float(ess['x'].values)


def integrated_autocorrelation_time(series: Sequence[float]) -> float:
    """Integrated autocorrelation time in samples, n / ESS(mean).

    Series shorter than 4 samples and constant series give 1.0.
    """
    x = np.asarray(series, dtype=float)
    if x.size < 4 or np.ptp(x) == 0.0:
        return 1.0
    ess = effective_sample_size(x, method='mean')
    if not np.isfinite(ess) or ess <= 0.0:
        return float(x.size)
    return float(x.size / ess)


def _default_columns(trace: pd.DataFrame) -> List[str]:
    return [c for c in trace.columns
            if c not in ('sampled',) and not str(c).startswith('force_')]


def _trace_columns(trace: pd.DataFrame, columns: Optional[Sequence[str]],
                   burn_in: int) -> Dict[str, np.ndarray]:
    if columns is None:
        columns = _default_columns(trace)
    selected = {}
    for name in columns:
        values = trace[name].to_numpy(dtype=float)[burn_in:]
        if values.size == 0:
            raise ValueError(f"No samples left for '{name}' after burn-in of {burn_in}")
        selected[name] = values
    return selected


def summarize_trace(trace: pd.DataFrame,
                    columns: Optional[Sequence[str]] = None,
                    credible_interval: float = 0.95,
                    burn_in: int = 0) -> Dict[str, Dict[str, float]]:
    """Summary statistics of each component along the trace.

    Args:
        trace: Table of published components (see run_trajectory)
        columns: Components to summarize (all but forces and flags if None)
        credible_interval: HDI probability
        burn_in: Number of leading rows to discard

    Returns:
        Dict of component -> mean, median, std, mcse_mean, ci_lower, ci_upper
        (HDI bounds), ess (bulk), ess_tail, r_hat and tau (autocorrelation time)
    """
    _require_arviz()
    if not 0.0 < credible_interval < 1.0:
        raise ValueError(f"credible_interval must be in (0, 1), got {credible_interval}")

    selected = _trace_columns(trace, columns, burn_in)
    az_summary = az.summary(_as_dataset(selected), hdi_prob=credible_interval,
                            round_to='none')
    hdi_lower, hdi_upper = [c for c in az_summary.columns if str(c).startswith('hdi_')]

    summary = {}
    for name, values in selected.items():
        row = az_summary.loc[name]
        constant = np.ptp(values) == 0.0
        summary[name] = {
            'mean': float(row['mean']),
            'median': float(np.median(values)),
            'std': float(row['sd']),
            'mcse_mean': 0.0 if constant else float(row['mcse_mean']),
            'ci_lower': float(row[hdi_lower]),
            'ci_upper': float(row[hdi_upper]),
            'ess': float(values.size) if constant else float(row['ess_bulk']),
            'ess_tail': float(values.size) if constant else float(row['ess_tail']),
            'r_hat': float(row['r_hat']) if 'r_hat' in az_summary.columns else None,
            'tau': integrated_autocorrelation_time(values),
        }
    return summary


def plot_trace(trace: pd.DataFrame,
               columns: Optional[Sequence[str]] = None,
               burn_in: int = 0,
               save_path: Optional[str] = None):
    """ArviZ trace plot (marginal density and samples) of each component.

    Returns the matplotlib Figure, or None when plotting is unavailable.
    """
    if not (PLOTTING_AVAILABLE and ARVIZ_AVAILABLE):
        print("[Warning] Matplotlib/Seaborn/ArviZ not available for plotting")
        return None

    selected = _trace_columns(trace, columns, burn_in)
    axes = az.plot_trace(_as_dataset(selected), compact=True,
                         figsize=(12, 2.5 * len(selected)))
    fig = np.asarray(axes).ravel()[0].figure
    fig.tight_layout()

    if save_path:
        fig.savefig(f"{save_path}_trace.png", dpi=150, bbox_inches='tight')
        print(f"[Metainference] Trace plot written to {save_path}_trace.png")
    return fig
