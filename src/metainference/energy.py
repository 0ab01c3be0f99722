"""
Metainference — Energy and Force Model
======================================
Closed-form reduced energies of the metainference posterior and their
derivatives with respect to the observables.

Mathematical Framework:
    dev_i = scale * x_i - p_i

    Gaussian noise (GAUSS / MGAUSS), ss_i = sigma_j^2 + sigma_mean^2 with
    j = i for one sigma per datum, j = 0 otherwise:

        E = sum_i [ 0.5 * dev_i^2 / ss_i + ln(ss_i * sqrt(2 pi)) ]
        dE/dx_i = scale * dev_i / ss_i

    Long-tailed noise (LTAIL), s^2 = sigma^2 + sigma_mean^2,
    a2_i = 0.5 * dev_i^2 + s^2:

        E = sum_i ln( 2 a2_i / (1 - exp(-a2_i / sigma_mean^2)) )
            + ln(s) - n ln(SQRT2_DIV_PI * s)
        dE/dx_i = scale * dev_i * ( 1 / (sigma_mean^2 (1 - exp(a2_i / sigma_mean^2)))
                                    + 1 / a2_i )

Energies here are reduced (dimensionless); callers multiply by kBT. Generalized
forces are -kBT * dE/dx. Nothing in this module mutates its inputs.

License: MIT
"""

from dataclasses import dataclass
from typing import Callable, Dict, Tuple

import numpy as np

from .config import NoiseType

SQRT2PI = 2.506628274631001
# sqrt(2)/pi, the normalization constant of the long-tailed likelihood
SQRT2_DIV_PI = 0.45015815807855


def deviations(x: np.ndarray, reference: np.ndarray, scale: float) -> np.ndarray:
    return scale * np.asarray(x, dtype=float) - np.asarray(reference, dtype=float)


def _per_datum(values: np.ndarray, n_data: int) -> np.ndarray:
    # a single shared component applies to every datum
    values = np.asarray(values, dtype=float)
    if values.size == 1:
        return np.full(n_data, values.reshape(-1)[0])
    if values.size != n_data:
        raise ValueError(f"Expected 1 or {n_data} sigma components, got {values.size}")
    return values


# ═══════════════════════════════════════════════════════════════
# Gaussian noise
# ═══════════════════════════════════════════════════════════════

def gaussian_energy(x: np.ndarray, reference: np.ndarray, sigma: np.ndarray,
                    sigma_mean: float, scale: float) -> float:
    """Reduced energy for Gaussian noise, one shared or one-per-datum sigma."""
    dev = deviations(x, reference, scale)
    ss = _per_datum(np.square(sigma) + sigma_mean * sigma_mean, dev.size)
    return float(np.sum(0.5 * dev * dev / ss + np.log(ss * SQRT2PI)))


def gaussian_energy_terms(x: np.ndarray, reference: np.ndarray, ss: np.ndarray,
                          inv_ss: np.ndarray, scale: float) -> Tuple[float, np.ndarray]:
    """Energy and dE/dx for Gaussian noise given the variances and their inverses.

    ``inv_ss`` may be the replica-summed inverse variances while ``ss`` stays
    local, which is how the force pass couples replicas.
    """
    dev = deviations(x, reference, scale)
    ss = _per_datum(ss, dev.size)
    inv_ss = _per_datum(inv_ss, dev.size)
    energy = float(np.sum(0.5 * dev * dev * inv_ss + np.log(ss * SQRT2PI)))
    derivative = dev * scale * inv_ss
    return energy, derivative


# ═══════════════════════════════════════════════════════════════
# Long-tailed noise
# ═══════════════════════════════════════════════════════════════

def long_tail_normalization(sigma: float, sigma_mean: float, n_data: int) -> float:
    """Normalization plus Jeffreys prior term of the long-tailed energy."""
    s = np.sqrt(sigma * sigma + sigma_mean * sigma_mean)
    return float(np.log(s) - n_data * np.log(SQRT2_DIV_PI * s))


def long_tail_energy_terms(x: np.ndarray, reference: np.ndarray, sigma: float,
                           sigma_mean: float, scale: float) -> Tuple[float, np.ndarray]:
    """Per-datum part of the long-tailed energy and its dE/dx (no normalization)."""
    smean2 = sigma_mean * sigma_mean
    dev = deviations(x, reference, scale)
    a2 = 0.5 * dev * dev + (sigma * sigma + smean2)
    u = a2 / smean2
    energy = float(np.sum(np.log(2.0 * a2 / -np.expm1(-u))))
    with np.errstate(over='ignore'):
        # 1 / (1 - exp(u)), vanishing for large u
        dit = -1.0 / np.expm1(u)
    derivative = scale * dev * (dit / smean2 + 1.0 / a2)
    return energy, derivative


def long_tail_energy(x: np.ndarray, reference: np.ndarray, sigma: np.ndarray,
                     sigma_mean: float, scale: float) -> float:
    """Reduced energy for long-tailed noise with a single sigma."""
    sigma0 = float(np.asarray(sigma, dtype=float).reshape(-1)[0])
    energy, _ = long_tail_energy_terms(x, reference, sigma0, sigma_mean, scale)
    return energy + long_tail_normalization(sigma0, sigma_mean, np.size(x))


# ═══════════════════════════════════════════════════════════════
# Dispatch table
# ═══════════════════════════════════════════════════════════════

EnergyFunction = Callable[[np.ndarray, np.ndarray, np.ndarray, float, float], float]


@dataclass(frozen=True)
class NoiseModel:
    """Energy function and force-pass family for one noise type."""
    noise_type: NoiseType
    energy: EnergyFunction
    long_tailed: bool


NOISE_MODELS: Dict[NoiseType, NoiseModel] = {
    NoiseType.GAUSSIAN_SINGLE: NoiseModel(NoiseType.GAUSSIAN_SINGLE, gaussian_energy, False),
    NoiseType.GAUSSIAN_MULTI: NoiseModel(NoiseType.GAUSSIAN_MULTI, gaussian_energy, False),
    NoiseType.LONG_TAIL: NoiseModel(NoiseType.LONG_TAIL, long_tail_energy, True),
}


def reduced_energy(noise_type: NoiseType, x: np.ndarray, reference: np.ndarray,
                   sigma: np.ndarray, sigma_mean: float, scale: float) -> float:
    """Dispatch to the energy of ``noise_type``."""
    return NOISE_MODELS[noise_type].energy(x, reference, sigma, sigma_mean, scale)
