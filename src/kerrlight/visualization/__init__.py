"""Quick-look plotting of ray-traced images."""

from .plotter import ImagePlotter

__all__ = ['ImagePlotter']
