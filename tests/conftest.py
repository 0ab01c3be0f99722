"""
Pytest configuration and fixtures for reproducible testing.

This file provides centralized test configuration including:
- Random seed management for reproducibility
- Scripted random sources for deterministic Monte Carlo tests
- A thread harness running several replicas with real collectives
"""
import os
import sys
from concurrent.futures import ThreadPoolExecutor

import pytest
import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

from metainference.comm import ThreadGroup
from metainference.config import MetainferenceConfig, NoiseType


@pytest.fixture(scope="session", autouse=True)
def set_random_seeds():
    """Set the NumPy global seed once per session for reproducibility."""
    np.random.seed(42)
    yield


@pytest.fixture(scope="function")
def reset_seeds():
    """Reset the NumPy global seed before a test that needs fresh random state."""
    np.random.seed(42)
    yield


class ScriptedRandom:
    """Random source returning a fixed sequence of deviates."""

    def __init__(self, values):
        self.values = list(values)
        self.drawn = 0

    def uniform(self) -> float:
        value = self.values[self.drawn]
        self.drawn += 1
        return value

    def get_state(self):
        return {'drawn': self.drawn}

    def set_state(self, state):
        self.drawn = state['drawn']


@pytest.fixture
def scripted_random():
    return ScriptedRandom


def make_config(noise_type=NoiseType.GAUSSIAN_SINGLE, **overrides) -> MetainferenceConfig:
    """Small valid configuration, overridable field by field."""
    options = dict(
        noise_type=noise_type,
        parameters=[1.0, 2.0, 3.0],
        sigma0=[0.5],
        sigma_min=0.05,
        sigma_max=3.0,
        dsigma=0.1,
        sigma_mean=0.2,
        temp=300.0,
        mc_steps=5,
        mc_stride=1,
    )
    options.update(overrides)
    return MetainferenceConfig(**options)


@pytest.fixture
def config_factory():
    return make_config


def run_replicas(n_replicas, ranks_per_replica, target, timeout=20.0):
    """Run ``target(comm, multi_sim_comm, replica, rank)`` on one thread per process.

    Intra-replica rank 0 of every replica is a member of the inter-replica
    group; the other ranks receive ``None`` for it.

    Returns:
        results[replica][rank]
    """
    inter = ThreadGroup(n_replicas, timeout=timeout)
    intra = [ThreadGroup(ranks_per_replica, timeout=timeout) for _ in range(n_replicas)]

    jobs = {}
    with ThreadPoolExecutor(max_workers=n_replicas * ranks_per_replica) as pool:
        for replica in range(n_replicas):
            for rank in range(ranks_per_replica):
                comm = intra[replica].communicator(rank)
                multi = inter.communicator(replica) if rank == 0 else None
                jobs[(replica, rank)] = pool.submit(target, comm, multi, replica, rank)
        results = {key: job.result() for key, job in jobs.items()}

    return [[results[(replica, rank)] for rank in range(ranks_per_replica)]
            for replica in range(n_replicas)]


@pytest.fixture
def replica_runner():
    return run_replicas
