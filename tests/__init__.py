"""
Metainference — Test Suite
==========================

Test modules:
- test_config.py: option parsing and setup validation
- test_energy.py: energy/force closed forms and their consistency
- test_sampler.py: reflection, proposals and Metropolis acceptance
- test_replicas.py: collectives, replica topology and cross-replica consensus
- test_bias.py: per-step driver, published components and state restore
- test_stopwatch.py, test_replay.py, test_diagnostics.py: tooling
"""

__version__ = '0.1.0'
