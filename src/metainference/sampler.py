"""
Metainference — Monte Carlo Sampler
===================================
Metropolis sampling of the nuisance parameters (data scale and sigma).

Each invocation runs ``mc_steps`` iterations of:
  1. propose a new scale (if sampled), identical on every replica
  2. propose a new value for each sigma component, replica-local
  3. accept with probability min(1, exp(-(E_new - E_old) / kBT))
  4. re-share the scale so every replica ends the iteration in agreement

Proposals leaving the allowed interval are reflected once at the violated
bound. A proposal overshooting by more than the interval width still lands
outside and is kept as is.

License: MIT
"""

from typing import Callable, Optional

import numpy as np

from .comm import Communicator, SerialCommunicator
from .rng import RandomSource


def reflect(value: float, lower: float, upper: float) -> float:
    """Single reflection of ``value`` at the bound it crosses."""
    if value > upper:
        value = 2.0 * upper - value
    if value < lower:
        value = 2.0 * lower - value
    return value


def propose(current: float, delta: float, lower: float, upper: float, r: float) -> float:
    """Uniform move of half-width ``delta`` driven by ``r`` in [0, 1), then reflected."""
    return reflect(current + (-delta + r * 2.0 * delta), lower, upper)


class MonteCarloSampler:
    """Metropolis sampler for the scale factor and the sigma vector.

    The sampler owns the mutable posterior state: ``scale``, ``sigma``,
    ``accept_count`` and ``old_energy``. ``old_energy`` is computed on the
    first invocation and then carried from one invocation to the next.
    """

    def __init__(self,
                 sigma: np.ndarray,
                 sigma_bounds,
                 dsigma: float,
                 kbt: float,
                 random_source: RandomSource,
                 mc_steps: int = 1,
                 scale: float = 1.0,
                 scale_bounds=None,
                 dscale: float = 0.0,
                 sample_scale: bool = False,
                 comm: Optional[Communicator] = None,
                 multi_sim_comm: Optional[Communicator] = None):
        self.sigma = np.array(sigma, dtype=float)
        self.sigma_min, self.sigma_max = sigma_bounds
        self.dsigma = dsigma
        self.scale = float(scale)
        self.sample_scale = sample_scale
        if sample_scale:
            self.scale_min, self.scale_max = scale_bounds
        else:
            self.scale_min = self.scale_max = None
        self.dscale = dscale
        self.kbt = kbt
        self.mc_steps = mc_steps
        self.random = random_source
        self.comm = comm or SerialCommunicator()
        self.multi_sim_comm = multi_sim_comm

        self.accept_count = 0
        self.n_invocations = 0
        self.old_energy: Optional[float] = None

    def _share_scale(self, value: float) -> float:
        # replica representatives agree first, then each replica's members
        if self.comm.get_rank() == 0 and self.multi_sim_comm is not None:
            value = self.multi_sim_comm.bcast(value, 0)
        return float(self.comm.bcast(value, 0))

    def sample(self, energy_fn: Callable[[np.ndarray, float], float]):
        """Run one batch of ``mc_steps`` Metropolis iterations.

        Args:
            energy_fn: (sigma, scale) -> energy in energy units (kBT-scaled)
        """
        if self.old_energy is None:
            self.old_energy = energy_fn(self.sigma, self.scale)

        for _ in range(self.mc_steps):
            new_scale = self.scale
            if self.sample_scale:
                new_scale = propose(self.scale, self.dscale, self.scale_min,
                                    self.scale_max, self.random.uniform())
                new_scale = self._share_scale(new_scale)

            new_sigma = np.empty_like(self.sigma)
            for j in range(self.sigma.size):
                new_sigma[j] = propose(self.sigma[j], self.dsigma, self.sigma_min,
                                       self.sigma_max, self.random.uniform())

            new_energy = energy_fn(new_sigma, new_scale)

            delta = (new_energy - self.old_energy) / self.kbt
            if delta <= 0.0 or self.random.uniform() < np.exp(-delta):
                self.old_energy = new_energy
                self.scale = new_scale
                self.sigma = new_sigma
                self.accept_count += 1

            if self.sample_scale:
                self.scale = self._share_scale(self.scale)

        self.n_invocations += 1

    def acceptance_ratio(self, trials: float) -> float:
        """Accepted moves per MC step over ``trials`` sampler invocations."""
        if self.mc_steps == 0 or trials <= 0:
            return 0.0
        return self.accept_count / self.mc_steps / trials
