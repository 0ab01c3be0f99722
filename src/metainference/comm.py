"""
Metainference — Collective Communication
========================================
Blocking collective primitives the bias needs from its host.

Two nested groups are involved:
  - the intra-replica group (``comm``): all processes of one simulation copy
  - the inter-replica group (``multi_sim_comm``): one representative
    (intra-replica rank 0) per replica

Every member of a group must call the same collectives in the same order.
Nothing here catches communication errors; a failed collective aborts the
caller just like it would abort the host engine.

Implementations:
  - SerialCommunicator: a group of one
  - ThreadGroup / ThreadCommunicator: replicas as threads of one interpreter
  - MPICommunicator: adapter over an mpi4py communicator (optional)

License: MIT
"""

import threading
from typing import Any, List, Optional

import numpy as np

try:
    from mpi4py import MPI
    MPI_AVAILABLE = True
except ImportError:
    MPI_AVAILABLE = False
    MPI = None


class Communicator:
    """Interface of a blocking collective group."""

    def get_rank(self) -> int:
        raise NotImplementedError

    def get_size(self) -> int:
        raise NotImplementedError

    def sum(self, value):
        """All-reduce sum. Scalars come back as floats, arrays as new arrays."""
        raise NotImplementedError

    def bcast(self, value, root: int = 0):
        """Return ``root``'s value on every member."""
        raise NotImplementedError


def _as_result(value):
    if np.ndim(value) == 0:
        return value.item() if isinstance(value, np.generic) else value
    return np.array(value, dtype=float, copy=True)


class SerialCommunicator(Communicator):
    """A group with a single member."""

    def get_rank(self) -> int:
        return 0

    def get_size(self) -> int:
        return 1

    def sum(self, value):
        return _as_result(value)

    def bcast(self, value, root: int = 0):
        if root != 0:
            raise ValueError(f"Invalid root {root} for a group of size 1")
        return _as_result(value)


# ═══════════════════════════════════════════════════════════════
# Thread-backed groups
# ═══════════════════════════════════════════════════════════════

class ThreadGroup:
    """Shared rendezvous for ``size`` threads acting as one collective group.

    Usage:
        group = ThreadGroup(4)
        comms = [group.communicator(rank) for rank in range(4)]
        # hand comms[i] to the code running in thread i
    """

    def __init__(self, size: int, timeout: Optional[float] = None):
        if size < 1:
            raise ValueError(f"Group size must be at least 1, got {size}")
        self.size = size
        self.timeout = timeout
        self._barrier = threading.Barrier(size, timeout=timeout)
        self._slots: List[Any] = [None] * size

    def communicator(self, rank: int) -> 'ThreadCommunicator':
        if not 0 <= rank < self.size:
            raise ValueError(f"Rank {rank} out of range for a group of size {self.size}")
        return ThreadCommunicator(self, rank)

    def communicators(self) -> List['ThreadCommunicator']:
        return [self.communicator(rank) for rank in range(self.size)]

    def _exchange(self, rank: int, value) -> List[Any]:
        # the second wait keeps slots intact until every member has read them
        self._slots[rank] = value
        self._barrier.wait()
        values = list(self._slots)
        self._barrier.wait()
        return values


class ThreadCommunicator(Communicator):
    """One member's handle on a ThreadGroup."""

    def __init__(self, group: ThreadGroup, rank: int):
        self.group = group
        self.rank = rank

    def get_rank(self) -> int:
        return self.rank

    def get_size(self) -> int:
        return self.group.size

    def sum(self, value):
        values = self.group._exchange(self.rank, value)
        if np.ndim(value) == 0:
            return _as_result(sum(values))
        return np.sum(np.asarray(values, dtype=float), axis=0)

    def bcast(self, value, root: int = 0):
        if not 0 <= root < self.group.size:
            raise ValueError(f"Invalid root {root} for a group of size {self.group.size}")
        values = self.group._exchange(self.rank, value)
        return _as_result(values[root])


# ═══════════════════════════════════════════════════════════════
# MPI adapter
# ═══════════════════════════════════════════════════════════════

class MPICommunicator(Communicator):
    """Adapter over an ``mpi4py`` communicator."""

    def __init__(self, comm=None):
        if not MPI_AVAILABLE:
            raise ImportError("mpi4py required. Install with: pip install mpi4py")
        self.comm = comm if comm is not None else MPI.COMM_WORLD

    def get_rank(self) -> int:
        return self.comm.Get_rank()

    def get_size(self) -> int:
        return self.comm.Get_size()

    def sum(self, value):
        if np.ndim(value) == 0:
            return _as_result(self.comm.allreduce(value, op=MPI.SUM))
        send = np.ascontiguousarray(value, dtype=float)
        recv = np.empty_like(send)
        self.comm.Allreduce(send, recv, op=MPI.SUM)
        return recv

    def bcast(self, value, root: int = 0):
        if np.ndim(value) == 0:
            return _as_result(self.comm.bcast(value, root=root))
        buf = np.array(value, dtype=float, copy=True)
        self.comm.Bcast(buf, root=root)
        return buf
