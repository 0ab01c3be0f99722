"""
Metainference — Replica Topology
================================
Number and index of the replicas sharing the metainference posterior.
"""

import math
from dataclasses import dataclass
from typing import Optional

from .comm import Communicator


@dataclass(frozen=True)
class ReplicaTopology:
    """Replica count and index as seen by every process of a replica."""
    count: int
    index: int

    @classmethod
    def discover(cls, comm: Communicator,
                 multi_sim_comm: Optional[Communicator] = None) -> 'ReplicaTopology':
        """Read the inter-replica group on rank 0 and share it within the replica.

        Only intra-replica rank 0 belongs to the inter-replica group; the other
        ranks contribute zeros to the intra-replica sum.
        """
        if comm.get_rank() == 0:
            if multi_sim_comm is None:
                count, index = 1, 0
            else:
                count, index = multi_sim_comm.get_size(), multi_sim_comm.get_rank()
        else:
            count, index = 0, 0
        count = int(comm.sum(count))
        index = int(comm.sum(index))
        return cls(count=count, index=index)

    def scale_sigma_mean(self, sigma_mean: float) -> float:
        """Uncertainty of the mean over ``count`` replicas."""
        return sigma_mean / math.sqrt(float(self.count))
