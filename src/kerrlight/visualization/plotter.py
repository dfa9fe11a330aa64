"""Quick-look plots of ray-traced images.

Renders the total intensity of an image dataset (as produced by
``RadiationIntegrator.image_dataset``) to PNG. Polarized images get a
second panel with the linear polarization fraction.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import xarray as xr
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

__all__ = ['ImagePlotter']

logger = logging.getLogger(__name__)


class ImagePlotter:
    """Renders intensity (and polarization fraction) images to files.

    Parameters
    ----------
    dpi : int, optional
    figsize : tuple of float, optional
        Size of one panel; polarized images are twice as wide.
    cmap : str, optional
    log_scale : bool, optional
        Plot log10 of the intensity normalized to its maximum.
    output_format : str, optional

    Examples
    --------
    >>> plotter = ImagePlotter()
    >>> plotter.plot_image(ds, "out/image_0000.png")
    'out/image_0000.png'
    """

    def __init__(self, dpi: int = 150, figsize: Tuple[float, float] = (6.0, 5.0),
                 cmap: str = "afmhot", log_scale: bool = False, output_format: str = "png"):
        self.dpi = dpi
        self.figsize = tuple(figsize)
        self.cmap = cmap
        self.log_scale = log_scale
        self.output_format = output_format

    def _intensity(self, ds: xr.Dataset) -> np.ndarray:
        values = np.asarray(ds["I"].values, dtype=float)
        if not self.log_scale:
            return np.ma.masked_invalid(values)
        peak = np.nanmax(values) if np.any(np.isfinite(values)) else 0.0
        with np.errstate(divide="ignore", invalid="ignore"):
            scaled = np.log10(values / peak) if peak > 0.0 else np.full_like(values, np.nan)
        return np.ma.masked_invalid(scaled)

    @staticmethod
    def _linear_fraction(ds: xr.Dataset) -> np.ndarray:
        i = np.asarray(ds["I"].values, dtype=float)
        q = np.asarray(ds["Q"].values, dtype=float)
        u = np.asarray(ds["U"].values, dtype=float)
        with np.errstate(divide="ignore", invalid="ignore"):
            frac = np.where(i > 0.0, np.hypot(q, u) / i, np.nan)
        return np.ma.masked_invalid(frac)

    def _setup_figure(self, num_panels: int):
        width, height = self.figsize
        fig, axes = plt.subplots(1, num_panels, figsize=(width * num_panels, height),
                                 dpi=self.dpi, squeeze=False)
        return fig, axes[0]

    def _panel(self, ax, x, y, values, label, title, **kwargs):
        mesh = ax.pcolormesh(x, y, values, shading='auto', **kwargs)
        plt.colorbar(mesh, ax=ax, label=label, fraction=0.046, pad=0.04)
        ax.set_aspect('equal')
        ax.set_xlabel(r'$x$ [$GM/c^2$]')
        ax.set_ylabel(r'$y$ [$GM/c^2$]')
        ax.set_title(title)
        return mesh

    def plot_image(self, ds: xr.Dataset, output_path, title: Optional[str] = None) -> str:
        """Render ``ds`` and save it.

        Parameters
        ----------
        ds : xr.Dataset
            Image dataset with at least the ``I`` variable.
        output_path : str or Path
            Destination; the suffix is replaced by the output format.
        title : str, optional

        Returns
        -------
        str
            Path of the written file.
        """
        if "I" not in ds.data_vars:
            raise ValueError("Image dataset has no intensity variable 'I'")
        polarized = all(name in ds.data_vars for name in ("Q", "U"))
        x = np.asarray(ds["x"].values)
        y = np.asarray(ds["y"].values)

        fig, axes = self._setup_figure(2 if polarized else 1)
        if title is None:
            title = f"snapshot {ds.attrs.get('snapshot', 0)}, nu = {ds.attrs.get('frequency', 0):.3g} Hz"
        label = r'$\log_{10}(I/I_\mathrm{max})$' if self.log_scale else r'$I_\nu$ [cgs]'
        self._panel(axes[0], x, y, self._intensity(ds), label, title, cmap=self.cmap)
        if polarized:
            self._panel(axes[1], x, y, self._linear_fraction(ds), 'linear fraction',
                        'polarization', cmap='viridis', vmin=0.0, vmax=1.0)

        return self._save_figure(fig, Path(output_path))

    def _save_figure(self, fig, output_path: Path) -> str:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_file = output_path.with_suffix(f'.{self.output_format}')
        fig.savefig(output_file, dpi=self.dpi, bbox_inches='tight', format=self.output_format)
        plt.close(fig)
        logger.info("Plot saved: %s", output_file)
        return str(output_file)
