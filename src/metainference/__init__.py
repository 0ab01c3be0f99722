"""
Metainference - Bayesian bias for simulations restrained by noisy data

A metainference bias reconciles simulated observables with experimental
reference data by sampling a data scaling factor and the noise uncertainties
with Monte Carlo, and feeds the resulting posterior energy back to the
simulation as a bias and generalized forces.
"""

__version__ = "0.1.0"

# Configuration
from .config import (
    KB,
    MetainferenceConfig,
    NoiseType,
    ScalarArgument,
)

# Collective communication
from .comm import (
    Communicator,
    MPICommunicator,
    SerialCommunicator,
    ThreadCommunicator,
    ThreadGroup,
)

# Core
from .energy import NOISE_MODELS, NoiseModel, reduced_energy
from .replica import ReplicaTopology
from .rng import RandomSource
from .sampler import MonteCarloSampler, propose, reflect
from .bias import BiasResult, ComponentStore, MetainferenceBias, ValueSink
from .stopwatch import Stopwatch

# Offline analysis
from .replay import run_trajectory
from .diagnostics import (
    effective_sample_size,
    integrated_autocorrelation_time,
    plot_trace,
    summarize_trace,
)

__all__ = [
    "KB",
    "MetainferenceConfig",
    "NoiseType",
    "ScalarArgument",
    "Communicator",
    "MPICommunicator",
    "SerialCommunicator",
    "ThreadCommunicator",
    "ThreadGroup",
    "NOISE_MODELS",
    "NoiseModel",
    "reduced_energy",
    "ReplicaTopology",
    "RandomSource",
    "MonteCarloSampler",
    "propose",
    "reflect",
    "BiasResult",
    "ComponentStore",
    "MetainferenceBias",
    "ValueSink",
    "Stopwatch",
    "run_trajectory",
    "effective_sample_size",
    "integrated_autocorrelation_time",
    "plot_trace",
    "summarize_trace",
]
