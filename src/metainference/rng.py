"""
Metainference — Random Source
=============================
Per-instance uniform generator used by the Monte Carlo sampler.

All processes of a replica must draw the same numbers, so the seed is chosen
on intra-replica rank 0 and shared with an intra-replica sum.
"""

import time
from typing import Optional

import numpy as np

from .comm import Communicator


class RandomSource:
    """Seeded source of uniform deviates in [0, 1)."""

    def __init__(self, seed: int):
        self.seed = int(seed)
        self._rng = np.random.default_rng(self.seed)

    @classmethod
    def for_replica(cls, comm: Communicator, replica_index: int,
                    entropy: Optional[int] = None) -> 'RandomSource':
        """Seed from ``entropy`` (wall-clock seconds by default) plus the replica index."""
        if comm.get_rank() == 0:
            if entropy is None:
                entropy = int(time.time())
            seed = int(entropy) + int(replica_index)
        else:
            seed = 0
        return cls(int(comm.sum(seed)))

    def uniform(self) -> float:
        return float(self._rng.random())

    def get_state(self) -> dict:
        return self._rng.bit_generator.state

    def set_state(self, state: dict):
        self._rng.bit_generator.state = state
