"""
Tests for collectives, replica topology and cross-replica consensus

Replicas run as threads sharing ThreadGroup collectives, so every test here
exercises the same call ordering an MPI run would.
"""

import pytest
import numpy as np
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

from metainference.bias import MetainferenceBias
from metainference.comm import SerialCommunicator, ThreadGroup
from metainference.config import NoiseType
from metainference.energy import long_tail_energy_terms, long_tail_normalization
from metainference.replica import ReplicaTopology
from metainference.rng import RandomSource


class TestSerialCommunicator:
    """Test the group of one."""

    def test_rank_and_size(self):
        comm = SerialCommunicator()
        assert comm.get_rank() == 0
        assert comm.get_size() == 1

    def test_sum_returns_copy(self):
        comm = SerialCommunicator()
        values = np.array([1.0, 2.0])
        result = comm.sum(values)
        result[0] = 99.0
        assert values[0] == 1.0

    def test_scalar_sum(self):
        assert SerialCommunicator().sum(np.float64(2.5)) == 2.5

    def test_invalid_root(self):
        with pytest.raises(ValueError, match="root"):
            SerialCommunicator().bcast(1.0, root=1)


class TestThreadCollectives:
    """Test collectives between threads."""

    def test_invalid_group(self):
        with pytest.raises(ValueError):
            ThreadGroup(0)
        with pytest.raises(ValueError, match="out of range"):
            ThreadGroup(2).communicator(2)

    def test_scalar_and_array_sum(self, replica_runner):
        def target(comm, multi, replica, rank):
            scalar = multi.sum(replica + 1.0)
            array = multi.sum(np.array([replica, 1.0]))
            return scalar, array

        results = replica_runner(3, 1, target)
        for (scalar, array), in results:
            assert scalar == pytest.approx(6.0)
            np.testing.assert_allclose(array, [3.0, 3.0])

    def test_bcast_from_root(self, replica_runner):
        def target(comm, multi, replica, rank):
            return multi.bcast(10.0 * replica, root=2)

        results = replica_runner(3, 1, target)
        assert [r[0] for r in results] == [20.0, 20.0, 20.0]

    def test_repeated_collectives_stay_ordered(self, replica_runner):
        def target(comm, multi, replica, rank):
            return [comm.sum(float(i + rank)) for i in range(20)]

        results = replica_runner(1, 3, target)
        expected = [3.0 * i + 3.0 for i in range(20)]
        for values in results[0]:
            assert values == expected


class TestReplicaTopology:
    """Test replica discovery."""

    def test_single_process(self):
        topology = ReplicaTopology.discover(SerialCommunicator())
        assert (topology.count, topology.index) == (1, 0)

    def test_two_by_two(self, replica_runner):
        def target(comm, multi, replica, rank):
            return ReplicaTopology.discover(comm, multi)

        results = replica_runner(2, 2, target)
        for replica in range(2):
            for topology in results[replica]:
                assert topology.count == 2
                assert topology.index == replica

    def test_sigma_mean_scaling(self):
        topology = ReplicaTopology(count=4, index=0)
        assert topology.scale_sigma_mean(0.2) == pytest.approx(0.1)


class TestRandomSeeding:
    """Test per-replica seeds."""

    def test_seed_shared_within_replica(self, replica_runner):
        def target(comm, multi, replica, rank):
            # only rank 0's entropy counts
            source = RandomSource.for_replica(comm, replica, entropy=1000 + 17 * rank)
            return source.seed, [source.uniform() for _ in range(5)]

        results = replica_runner(2, 3, target)
        for replica in range(2):
            seeds = {seed for seed, _ in results[replica]}
            assert seeds == {1000 + replica}
            draws = [values for _, values in results[replica]]
            assert all(d == draws[0] for d in draws)

    def test_replicas_draw_differently(self, replica_runner):
        def target(comm, multi, replica, rank):
            return RandomSource.for_replica(comm, replica, entropy=5).uniform()

        results = replica_runner(2, 1, target)
        assert results[0][0] != results[1][0]

    def test_state_round_trip(self):
        source = RandomSource(8)
        state = source.get_state()
        first = [source.uniform() for _ in range(3)]
        source.set_state(state)
        assert [source.uniform() for _ in range(3)] == first


class TestCrossReplicaSampling:
    """Test that replicas agree on the shared parameters."""

    def test_scale_consensus(self, replica_runner, config_factory):
        observables = {0: np.array([1.1, 2.3, 2.8]), 1: np.array([0.7, 1.6, 3.4])}

        def target(comm, multi, replica, rank):
            config = config_factory(
                noise_type=NoiseType.GAUSSIAN_MULTI,
                scale_data=True, scale0=1.0, scale_min=0.5, scale_max=1.5, dscale=0.1,
                mc_steps=5)
            bias = MetainferenceBias(config, comm=comm, multi_sim_comm=multi,
                                     random_source=RandomSource(100 + replica),
                                     verbose=False)
            for step in range(10):
                bias.calculate(step, observables[replica])
            return bias.scale, bias.sigma.copy(), bias.replicas

        results = replica_runner(2, 2, target)
        scales = {scale for per_replica in results for scale, _, _ in per_replica}
        assert len(scales) == 1

        for replica in range(2):
            (_, sigma0, topology), (_, sigma1, _) = results[replica]
            np.testing.assert_array_equal(sigma0, sigma1)
            assert topology.count == 2

        # sigma stays local to each replica
        assert not np.array_equal(results[0][0][1], results[1][0][1])

    def test_sigma_mean_uses_replica_count(self, replica_runner, config_factory):
        def target(comm, multi, replica, rank):
            bias = MetainferenceBias(config_factory(sigma_mean=0.2), comm=comm,
                                     multi_sim_comm=multi,
                                     random_source=RandomSource(1), verbose=False)
            return bias.sigma_mean

        results = replica_runner(4, 1, target)
        for (sigma_mean,) in results:
            assert sigma_mean == pytest.approx(0.1)


class TestCrossReplicaForces:
    """Test the replica-coupled force pass."""

    def test_gaussian_force_sums_inverse_variances(self, replica_runner, config_factory):
        sigmas = {0: 0.3, 1: 0.6}
        observables = {0: np.array([1.5, 2.0, 2.5]), 1: np.array([0.5, 2.2, 3.1])}
        kbt = 2.0

        def target(comm, multi, replica, rank):
            config = config_factory(sigma0=[sigmas[replica]], temp=None)
            bias = MetainferenceBias(config, comm=comm, multi_sim_comm=multi, kbt=kbt,
                                     random_source=RandomSource(7), verbose=False)
            return bias.energy_and_forces(observables[replica])

        results = replica_runner(2, 2, target)

        sm2 = 0.2 ** 2 / 2.0
        inv_sum = sum(1.0 / (s * s + sm2) for s in sigmas.values())
        reference = np.array([1.0, 2.0, 3.0])
        for replica in range(2):
            expected = -kbt * (observables[replica] - reference) * inv_sum
            for _, forces in results[replica]:
                np.testing.assert_allclose(forces, expected)
            assert results[replica][0][0] == pytest.approx(results[replica][1][0])

    def test_long_tail_energy_sums_replica_terms(self, replica_runner, config_factory):
        sigmas = {0: 0.3, 1: 0.5}
        observables = {0: np.array([1.2, 2.0, 2.6]), 1: np.array([0.9, 2.4, 3.3])}
        reference = np.array([1.0, 2.0, 3.0])
        sigma_mean = 0.2 / np.sqrt(2.0)

        def target(comm, multi, replica, rank):
            config = config_factory(noise_type=NoiseType.LONG_TAIL,
                                    sigma0=[sigmas[replica]], temp=None)
            bias = MetainferenceBias(config, comm=comm, multi_sim_comm=multi, kbt=1.0,
                                     random_source=RandomSource(7), verbose=False)
            return bias.energy_and_forces(observables[replica])

        results = replica_runner(2, 2, target)

        terms = [long_tail_energy_terms(observables[r], reference, sigmas[r], sigma_mean, 1.0)
                 for r in range(2)]
        summed_energy = sum(energy for energy, _ in terms)
        summed_derivative = terms[0][1] + terms[1][1]

        for replica in range(2):
            expected = summed_energy + long_tail_normalization(sigmas[replica], sigma_mean, 3)
            for energy, forces in results[replica]:
                assert energy == pytest.approx(expected)
                np.testing.assert_allclose(forces, -summed_derivative)
