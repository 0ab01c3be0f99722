"""
Metainference — Configuration
=============================
Option parsing and setup-time validation for the metainference bias.

The options mirror the keywords of the host input line:

    NOISETYPE            GAUSS | MGAUSS | LTAIL (compulsory)
    PARAMETERS / PARARG  reference values, exactly one of the two
    SCALEDATA            flag, sample a data scaling factor
    SCALE0 SCALE_MIN SCALE_MAX DSCALE
    SIGMA0 SIGMA_MIN SIGMA_MAX DSIGMA
    SIGMA_MEAN           uncertainty in the mean estimate (before replica scaling)
    TEMP                 optional explicit temperature
    MC_STEPS MC_STRIDE   sampler iterations and invocation stride
    OPTSIGMAMEAN         flag, accepted but without effect

Usage:
    config = MetainferenceConfig.from_keywords({
        'NOISETYPE': 'MGAUSS',
        'PARAMETERS': '1.2,3.4,0.8',
        'SIGMA0': '0.5',
        'SIGMA_MIN': 0.01, 'SIGMA_MAX': 2.0, 'DSIGMA': 0.1,
        'SIGMA_MEAN': 0.2,
    })
    reference = config.reference_values(n_args=3)
    sigma = config.initial_sigma(n_args=3)

License: MIT
"""

import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Optional, Sequence, Union

import numpy as np

# Boltzmann constant in kJ/(mol·K)
KB = 8.314462618e-3


# ═══════════════════════════════════════════════════════════════
# Noise models
# ═══════════════════════════════════════════════════════════════

class NoiseType(Enum):
    """Functional form of the noise relating simulated and experimental data."""
    GAUSSIAN_SINGLE = "GAUSS"   # Gaussian, one sigma for all the data
    GAUSSIAN_MULTI = "MGAUSS"   # Gaussian, one sigma per data point
    LONG_TAIL = "LTAIL"         # Long-tailed Gaussian, one sigma for all the data

    @classmethod
    def from_string(cls, keyword: str) -> 'NoiseType':
        for member in cls:
            if member.value == keyword.strip().upper():
                return member
        raise ValueError(f"Unknown noise type: {keyword}. "
                         f"Available: {[m.value for m in cls]}")

    @property
    def per_datum_sigma(self) -> bool:
        return self is NoiseType.GAUSSIAN_MULTI

    @property
    def description(self) -> str:
        return _NOISE_DESCRIPTIONS[self]


_NOISE_DESCRIPTIONS = {
    NoiseType.GAUSSIAN_SINGLE: "gaussian noise and a single noise parameter for all the data",
    NoiseType.GAUSSIAN_MULTI: "gaussian noise and a noise parameter for each data point",
    NoiseType.LONG_TAIL: "long tailed gaussian noise and a single noise parameter for all the data",
}


@dataclass
class ScalarArgument:
    """A scalar produced by another host action, used as PARARG input."""
    name: str
    value: float
    has_derivatives: bool = False

    def get(self) -> float:
        return self.value


# ═══════════════════════════════════════════════════════════════
# Configuration
# ═══════════════════════════════════════════════════════════════

@dataclass
class MetainferenceConfig:
    """Configuration of a metainference bias."""
    noise_type: NoiseType
    sigma0: List[float]
    sigma_min: float
    sigma_max: float
    dsigma: float
    sigma_mean: float

    # Reference data (exactly one of the two)
    parameters: Optional[List[float]] = None
    pararg: Optional[List[Union[float, ScalarArgument]]] = None

    # Data scaling factor
    scale_data: bool = False
    scale0: float = 1.0
    scale_min: Optional[float] = None
    scale_max: Optional[float] = None
    dscale: Optional[float] = None

    # Temperature (None or <= 0 means "inherit from the host")
    temp: Optional[float] = None

    # Monte Carlo
    mc_steps: int = 1
    mc_stride: int = 1

    # Accepted for input compatibility; SIGMA_MEAN always stays fixed
    opt_sigma_mean: bool = False

    def __post_init__(self):
        if isinstance(self.noise_type, str):
            self.noise_type = NoiseType.from_string(self.noise_type)
        if np.isscalar(self.sigma0):
            self.sigma0 = [float(self.sigma0)]
        else:
            self.sigma0 = [float(s) for s in self.sigma0]
        if not self.scale_data:
            self.scale0 = 1.0

    # ── Keyword parsing ──

    @classmethod
    def from_keywords(cls, keywords: Mapping[str, Any]) -> 'MetainferenceConfig':
        """Build a configuration from host-style upper-case keywords.

        Values may be numbers, sequences or strings (comma-separated for
        vectors). SCALEDATA is a flag: present and truthy enables scale
        sampling.
        """
        kw = {str(k).upper(): v for k, v in keywords.items()}

        unknown = set(kw) - _KNOWN_KEYWORDS
        if unknown:
            raise ValueError(f"Unknown keywords: {sorted(unknown)}")

        missing = [k for k in _COMPULSORY if k not in kw]
        if missing:
            raise ValueError(f"Missing compulsory keywords: {missing}")

        scale_data = _parse_flag(kw.get('SCALEDATA', False))
        if scale_data:
            missing = [k for k in _SCALE_KEYWORDS if k not in kw]
            if missing:
                raise ValueError(f"SCALEDATA requires keywords: {missing}")

        def scalar(key, default=None, cast=float):
            if key not in kw:
                return default
            return cast(_parse_scalar(kw[key]))

        pararg = None
        if 'PARARG' in kw:
            raw = kw['PARARG']
            pararg = list(raw) if isinstance(raw, (list, tuple)) else _parse_vector(raw)

        return cls(
            noise_type=NoiseType.from_string(str(kw['NOISETYPE'])),
            sigma0=_parse_vector(kw['SIGMA0']),
            sigma_min=scalar('SIGMA_MIN'),
            sigma_max=scalar('SIGMA_MAX'),
            dsigma=scalar('DSIGMA'),
            sigma_mean=scalar('SIGMA_MEAN'),
            parameters=_parse_vector(kw['PARAMETERS']) if 'PARAMETERS' in kw else None,
            pararg=pararg,
            scale_data=scale_data,
            scale0=scalar('SCALE0', 1.0) if scale_data else 1.0,
            scale_min=scalar('SCALE_MIN') if scale_data else None,
            scale_max=scalar('SCALE_MAX') if scale_data else None,
            dscale=scalar('DSCALE') if scale_data else None,
            temp=scalar('TEMP'),
            mc_steps=scalar('MC_STEPS', 1, cast=_as_int),
            mc_stride=scalar('MC_STRIDE', 1, cast=_as_int),
            opt_sigma_mean=_parse_flag(kw.get('OPTSIGMAMEAN', False)),
        )

    # ── Validation ──

    def validate(self):
        """Check bounds and counters. Raises ValueError on the first problem."""
        if self.sigma_min <= 0.0:
            raise ValueError(f"SIGMA_MIN must be positive, got {self.sigma_min}")
        if self.sigma_max < self.sigma_min:
            raise ValueError(f"SIGMA_MAX ({self.sigma_max}) is smaller than "
                             f"SIGMA_MIN ({self.sigma_min})")
        if self.dsigma < 0.0:
            raise ValueError(f"DSIGMA must be non-negative, got {self.dsigma}")
        if self.sigma_mean <= 0.0:
            raise ValueError(f"SIGMA_MEAN must be positive, got {self.sigma_mean}")
        if not self.sigma0:
            raise ValueError("SIGMA0 needs at least one value")
        if self.mc_steps < 0:
            raise ValueError(f"MC_STEPS must be non-negative, got {self.mc_steps}")
        if self.mc_stride < 1:
            raise ValueError(f"MC_STRIDE must be at least 1, got {self.mc_stride}")

        if self.scale_data:
            for name in ('scale_min', 'scale_max', 'dscale'):
                if getattr(self, name) is None:
                    raise ValueError(f"{name.upper()} is required with SCALEDATA")
            if self.scale_max < self.scale_min:
                raise ValueError(f"SCALE_MAX ({self.scale_max}) is smaller than "
                                 f"SCALE_MIN ({self.scale_min})")
            if self.dscale < 0.0:
                raise ValueError(f"DSCALE must be non-negative, got {self.dscale}")
            if not self.scale_min <= self.scale0 <= self.scale_max:
                warnings.warn(f"SCALE0 ({self.scale0}) is outside "
                              f"[{self.scale_min}, {self.scale_max}]")

        if any(s < self.sigma_min or s > self.sigma_max for s in self.sigma0):
            warnings.warn(f"SIGMA0 {self.sigma0} is outside "
                          f"[{self.sigma_min}, {self.sigma_max}]")
        if self.mc_steps == 0:
            warnings.warn("MC_STEPS is 0: noise parameters will never be sampled")
        if self.opt_sigma_mean:
            warnings.warn("OPTSIGMAMEAN has no effect: SIGMA_MEAN is kept fixed during the run")

    def reference_values(self, n_args: int) -> np.ndarray:
        """Resolve the experimental reference vector for ``n_args`` arguments."""
        if self.parameters is not None and self.pararg is not None:
            raise ValueError("It is not possible to use PARARG and PARAMETERS together")
        if self.parameters is not None and len(self.parameters) != n_args:
            raise ValueError("Size of PARAMETERS array should be the same as "
                             f"the number of arguments ({len(self.parameters)} vs {n_args})")

        if self.pararg is not None:
            if len(self.pararg) != n_args:
                raise ValueError("Size of PARARG array should be the same as "
                                 f"the number of arguments ({len(self.pararg)} vs {n_args})")
            values = []
            for arg in self.pararg:
                if isinstance(arg, ScalarArgument):
                    if arg.has_derivatives:
                        raise ValueError(f"PARARG can only accept arguments without "
                                         f"derivatives ('{arg.name}' has derivatives)")
                    values.append(arg.get())
                else:
                    values.append(float(arg))
            return np.array(values, dtype=float)

        if self.parameters is None:
            raise ValueError("Either PARARG or PARAMETERS must be given, with the "
                             "same number of elements as the arguments")
        return np.array(self.parameters, dtype=float)

    def initial_sigma(self, n_args: int) -> np.ndarray:
        """Expand SIGMA0 to the number of sigma components the noise type needs."""
        if not self.noise_type.per_datum_sigma and len(self.sigma0) > 1:
            raise ValueError("More than one SIGMA0 value is only allowed with "
                             f"NOISETYPE={NoiseType.GAUSSIAN_MULTI.value}")

        if len(self.sigma0) == n_args:
            return np.array(self.sigma0, dtype=float)
        if len(self.sigma0) == 1:
            n_sigma = n_args if self.noise_type.per_datum_sigma else 1
            return np.full(n_sigma, self.sigma0[0], dtype=float)
        raise ValueError("SIGMA0 can accept either one single value or as many values "
                         f"as the number of arguments ({n_args}), got {len(self.sigma0)}")

    def resolve_kbt(self, host_kbt: Optional[float] = None,
                    boltzmann: float = KB) -> float:
        """Thermal energy from TEMP if given, otherwise from the host."""
        if self.temp is not None and self.temp > 0.0:
            return boltzmann * self.temp
        if host_kbt is None or host_kbt <= 0.0:
            raise ValueError("No temperature available: set TEMP or pass the host kBT")
        return float(host_kbt)


# ═══════════════════════════════════════════════════════════════
# Keyword helpers
# ═══════════════════════════════════════════════════════════════

_COMPULSORY = ('NOISETYPE', 'SIGMA0', 'SIGMA_MIN', 'SIGMA_MAX', 'DSIGMA', 'SIGMA_MEAN')
_SCALE_KEYWORDS = ('SCALE0', 'SCALE_MIN', 'SCALE_MAX', 'DSCALE')
_KNOWN_KEYWORDS = set(_COMPULSORY) | set(_SCALE_KEYWORDS) | {
    'PARAMETERS', 'PARARG', 'SCALEDATA', 'TEMP', 'MC_STEPS', 'MC_STRIDE', 'OPTSIGMAMEAN',
}


def _parse_vector(value: Any) -> List[float]:
    if isinstance(value, str):
        items = [v for v in value.replace(' ', '').split(',') if v]
        return [float(v) for v in items]
    if np.isscalar(value):
        return [float(value)]
    return [float(v) for v in value]


def _parse_scalar(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, Sequence) or isinstance(value, np.ndarray):
        if len(value) != 1:
            raise ValueError(f"Expected a single value, got {value!r}")
        return value[0]
    return value


def _parse_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ('', '0', 'false', 'no', 'off')
    return bool(value)


def _as_int(value: Any) -> int:
    number = float(value)
    if not number.is_integer():
        raise ValueError(f"Expected an integer, got {value!r}")
    return int(number)
