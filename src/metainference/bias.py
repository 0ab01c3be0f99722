"""
Metainference — Bias Driver
===========================
Metainference score for a set of experimental data, applied as a bias.

Per force evaluation the bias:
  1. samples scale and sigma by Monte Carlo every ``mc_stride`` steps
     (never on replica-exchange steps)
  2. publishes the running acceptance ratio
  3. computes the energy with replica-reduced terms and the generalized
     forces on the observables
  4. publishes ``bias = kBT * energy``

Published components:
    bias, accept, scale (with SCALEDATA), sigma (GAUSS, LTAIL) or
    sigma_0 ... sigma_{n-1} (MGAUSS)

Usage:
    config = MetainferenceConfig(noise_type=NoiseType.GAUSSIAN_MULTI,
                                 parameters=[1.0, 2.0], sigma0=[0.5],
                                 sigma_min=0.01, sigma_max=2.0, dsigma=0.05,
                                 sigma_mean=0.1, temp=300.0, mc_steps=10)
    bias = MetainferenceBias(config)

    for step, x in enumerate(trajectory):
        result = bias.calculate(step, x)
        apply(result.forces)

License: MIT
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from .comm import Communicator, SerialCommunicator
from .config import KB, MetainferenceConfig
from .energy import (
    NOISE_MODELS,
    gaussian_energy_terms,
    long_tail_energy_terms,
    long_tail_normalization,
)
from .replica import ReplicaTopology
from .rng import RandomSource
from .sampler import MonteCarloSampler
from .stopwatch import Stopwatch


# ═══════════════════════════════════════════════════════════════
# Output sinks
# ═══════════════════════════════════════════════════════════════

class ValueSink:
    """Receiver of published components and output forces."""

    def set_component(self, name: str, value: float):
        raise NotImplementedError

    def set_output_force(self, index: int, value: float):
        raise NotImplementedError


class ComponentStore(ValueSink):
    """Keeps the latest value of every component and every output force."""

    def __init__(self, n_args: int = 0):
        self.components: Dict[str, float] = {}
        self.forces = np.zeros(n_args)

    def set_component(self, name: str, value: float):
        self.components[name] = float(value)

    def set_output_force(self, index: int, value: float):
        if index >= self.forces.size:
            self.forces = np.concatenate([self.forces, np.zeros(index + 1 - self.forces.size)])
        self.forces[index] = value


@dataclass
class BiasResult:
    """Outcome of one bias evaluation."""
    step: int
    bias: float
    forces: np.ndarray
    components: Dict[str, float]
    sampled: bool


# ═══════════════════════════════════════════════════════════════
# Metainference bias
# ═══════════════════════════════════════════════════════════════

class MetainferenceBias:
    """Metainference bias with Monte Carlo sampling of the noise parameters.

    Args:
        config: Options of the bias (validated here)
        n_args: Number of observables provided by the host (taken from the
            reference data if None)
        comm: Intra-replica group (serial if None)
        multi_sim_comm: Inter-replica group, needed on intra-replica rank 0
            only (a single replica if None)
        kbt: Thermal energy provided by the host, used when TEMP is not set
        boltzmann: Boltzmann constant in host units, used with TEMP
        stride: Host multiple-time-step factor; MC_STRIDE is multiplied by it
        random_source: Generator for the sampler (seeded per replica if None)
        sink: Receiver of components and forces (ComponentStore if None)
        verbose: Print the setup summary on intra-replica rank 0
    """

    def __init__(self,
                 config: MetainferenceConfig,
                 n_args: Optional[int] = None,
                 comm: Optional[Communicator] = None,
                 multi_sim_comm: Optional[Communicator] = None,
                 kbt: Optional[float] = None,
                 boltzmann: float = KB,
                 stride: int = 1,
                 random_source: Optional[RandomSource] = None,
                 sink: Optional[ValueSink] = None,
                 verbose: bool = True):
        config.validate()
        if stride < 1:
            raise ValueError(f"Host stride must be at least 1, got {stride}")

        self.config = config
        self.noise_type = config.noise_type
        self.model = NOISE_MODELS[config.noise_type]
        self.comm = comm or SerialCommunicator()
        self.multi_sim_comm = multi_sim_comm

        if n_args is None:
            n_args = self._n_args_hint()
        self.parameters = config.reference_values(n_args)
        self.n_args = self.parameters.size
        sigma = config.initial_sigma(self.n_args)
        self.kbt = config.resolve_kbt(kbt, boltzmann)

        self.replicas = ReplicaTopology.discover(self.comm, self.multi_sim_comm)
        self.sigma_mean = self.replicas.scale_sigma_mean(config.sigma_mean)

        self.mc_steps = config.mc_steps
        self.mc_stride = config.mc_stride * stride
        self.mc_first_step = -1

        if random_source is None:
            random_source = RandomSource.for_replica(self.comm, self.replicas.index)
        self.random = random_source

        self.sampler = MonteCarloSampler(
            sigma=sigma,
            sigma_bounds=(config.sigma_min, config.sigma_max),
            dsigma=config.dsigma,
            kbt=self.kbt,
            random_source=self.random,
            mc_steps=self.mc_steps,
            scale=config.scale0,
            scale_bounds=(config.scale_min, config.scale_max),
            dscale=config.dscale or 0.0,
            sample_scale=config.scale_data,
            comm=self.comm,
            multi_sim_comm=self.multi_sim_comm,
        )

        self.sink = sink or ComponentStore(self.n_args)
        self.stopwatch = Stopwatch()
        self.verbose = verbose

        if self.noise_type.per_datum_sigma:
            self._sigma_names = [f"sigma_{i}" for i in range(sigma.size)]
        else:
            self._sigma_names = ["sigma"]

        self._publish_parameters()
        if self.verbose and self.comm.get_rank() == 0:
            self._print_setup()

    def _n_args_hint(self) -> int:
        # the reference vector fixes the number of arguments
        if self.config.parameters is not None:
            return len(self.config.parameters)
        if self.config.pararg is not None:
            return len(self.config.pararg)
        return 0

    # ── Properties ──

    @property
    def scale(self) -> float:
        return self.sampler.scale

    @property
    def sigma(self) -> np.ndarray:
        return self.sampler.sigma

    @property
    def accept_count(self) -> int:
        return self.sampler.accept_count

    @property
    def component_names(self) -> List[str]:
        names = ["bias"]
        if self.config.scale_data:
            names.append("scale")
        names.append("accept")
        return names + list(self._sigma_names)

    # ── Setup summary ──

    def _print_setup(self):
        cfg = self.config
        print(f"[Metainference] With {self.noise_type.description}")
        if cfg.scale_data:
            print("[Metainference] Sampling a common scaling factor with:")
            print(f"  initial scale parameter {self.scale:f}")
            print(f"  minimum scale parameter {cfg.scale_min:f}")
            print(f"  maximum scale parameter {cfg.scale_max:f}")
            print(f"  maximum MC move of scale parameter {cfg.dscale:f}")
        if self.sigma.size == 1:
            print(f"  initial data uncertainty {self.sigma[0]:f}")
        else:
            print("  initial data uncertainties " + " ".join(f"{s:f}" for s in self.sigma))
        print(f"  minimum data uncertainty {cfg.sigma_min:f}")
        print(f"  maximum data uncertainty {cfg.sigma_max:f}")
        print(f"  maximum MC move of data uncertainty {cfg.dsigma:f}")
        print(f"  uncertainty in the mean estimate {self.sigma_mean:f}")
        print(f"  temperature of the system {self.kbt:f}")
        print(f"  number of experimental data points {self.n_args}")
        print(f"  number of replicas {self.replicas.count}")
        print(f"  MC steps {self.mc_steps}")
        print(f"  MC stride {self.mc_stride}")

    # ── Energies ──

    def energy(self, observables, sigma: Optional[np.ndarray] = None,
               scale: Optional[float] = None) -> float:
        """Replica-local energy (kBT units applied) used as the MC objective."""
        x = self._check_observables(observables)
        sigma = self.sigma if sigma is None else sigma
        scale = self.scale if scale is None else scale
        return self.kbt * self.model.energy(x, self.parameters, sigma, self.sigma_mean, scale)

    def _check_observables(self, observables) -> np.ndarray:
        x = np.asarray(observables, dtype=float).reshape(-1)
        if x.size != self.n_args:
            raise ValueError(f"Expected {self.n_args} observables, got {x.size}")
        return x

    def _energy_force_gaussian(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        ss = np.square(self.sigma) + self.sigma_mean * self.sigma_mean
        if self.comm.get_rank() == 0:
            inv_ss = 1.0 / ss
            if self.multi_sim_comm is not None:
                inv_ss = self.multi_sim_comm.sum(inv_ss)
        else:
            inv_ss = np.zeros_like(ss)
        inv_ss = self.comm.sum(inv_ss)
        return gaussian_energy_terms(x, self.parameters, ss, inv_ss, self.scale)

    def _energy_force_long_tail(self, x: np.ndarray) -> Tuple[float, np.ndarray]:
        sigma = float(self.sigma[0])
        energy = 0.0
        derivative = np.zeros(self.n_args)
        if self.comm.get_rank() == 0:
            energy, derivative = long_tail_energy_terms(
                x, self.parameters, sigma, self.sigma_mean, self.scale)
            if self.multi_sim_comm is not None:
                derivative = self.multi_sim_comm.sum(derivative)
                energy = self.multi_sim_comm.sum(energy)
            # normalization and prior of the local replica only
            energy += long_tail_normalization(sigma, self.sigma_mean, self.n_args)
        derivative = self.comm.sum(derivative)
        energy = self.comm.sum(energy)
        return float(energy), derivative

    def energy_and_forces(self, observables) -> Tuple[float, np.ndarray]:
        """Reduced energy and generalized forces -kBT dE/dx at the current parameters."""
        x = self._check_observables(observables)
        if self.model.long_tailed:
            energy, derivative = self._energy_force_long_tail(x)
        else:
            energy, derivative = self._energy_force_gaussian(x)
        return energy, -self.kbt * np.asarray(derivative, dtype=float)

    # ── Step ──

    def _publish_parameters(self):
        if self.config.scale_data:
            self.sink.set_component("scale", self.scale)
        for name, value in zip(self._sigma_names, self.sigma):
            self.sink.set_component(name, value)

    def acceptance_ratio(self, step: int) -> float:
        """Running acceptance over the sampler invocations due since the first step."""
        if self.mc_first_step == -1:
            return 0.0
        trials = math.floor((step - self.mc_first_step) / self.mc_stride) + 1.0
        return self.sampler.acceptance_ratio(trials)

    def calculate(self, step: int, observables, exchange_step: bool = False) -> BiasResult:
        """Evaluate the bias at ``step`` for the current observables.

        Args:
            step: Host step index
            observables: Current values of the n arguments
            exchange_step: True on replica-exchange steps (no sampling)

        Returns:
            BiasResult with the bias energy, forces and published components
        """
        x = self._check_observables(observables)

        sampled = False
        if step % self.mc_stride == 0 and not exchange_step:
            with self.stopwatch.start_stop("monte_carlo"):
                self.sampler.sample(
                    lambda sigma, scale: self.energy(x, sigma, scale))
            self._publish_parameters()
            sampled = True

        # fixed once, also when the run starts from a restored state
        if self.mc_first_step == -1:
            self.mc_first_step = step

        accept = self.acceptance_ratio(step)
        self.sink.set_component("accept", accept)

        with self.stopwatch.start_stop("energy_force"):
            energy, forces = self.energy_and_forces(x)
        for i, force in enumerate(forces):
            self.sink.set_output_force(i, force)
        bias = self.kbt * energy
        self.sink.set_component("bias", bias)

        components = {"bias": bias, "accept": accept}
        if self.config.scale_data:
            components["scale"] = self.scale
        components.update(zip(self._sigma_names, (float(s) for s in self.sigma)))
        return BiasResult(step=step, bias=bias, forces=forces,
                          components=components, sampled=sampled)

    # ── State for host checkpoints ──

    def get_state(self) -> Dict:
        """Mutable state as plain Python values."""
        return {
            'scale': self.sampler.scale,
            'sigma': [float(s) for s in self.sampler.sigma],
            'accept_count': self.sampler.accept_count,
            'old_energy': self.sampler.old_energy,
            'mc_first_step': self.mc_first_step,
            'random_state': self.random.get_state(),
        }

    def restore_state(self, state: Dict):
        """Restore a state produced by get_state()."""
        sigma = np.array(state['sigma'], dtype=float)
        if sigma.size != self.sampler.sigma.size:
            raise ValueError(f"Expected {self.sampler.sigma.size} sigma values, "
                             f"got {sigma.size}")
        self.sampler.scale = float(state['scale'])
        self.sampler.sigma = sigma
        self.sampler.accept_count = int(state.get('accept_count', 0))
        self.sampler.old_energy = state.get('old_energy')
        self.mc_first_step = int(state.get('mc_first_step', -1))
        if state.get('random_state') is not None:
            self.random.set_state(state['random_state'])
        self._publish_parameters()

    def timing_report(self) -> str:
        return self.stopwatch.report()
