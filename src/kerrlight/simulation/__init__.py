"""Simulation grid input."""

from kerrlight.simulation.grid import SimulationGrid, open_simulation_grid

__all__ = ["SimulationGrid", "open_simulation_grid"]
