"""Command-line interface modules for kerrlight runs.

This package contains core execution logic, making scripts/ optional and deletable.
"""

from kerrlight.cli.run_raytrace import run_raytrace

__all__ = ['run_raytrace']
