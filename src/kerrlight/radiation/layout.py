"""Image buffer layout.

The image buffer of a level has shape (num_quantities, num_pix). Which
rows exist depends on the enabled image quantities; their offsets are
fixed once at setup, in this order:

    light (1 row, or 4 for I, Q, U, V), time, length, lambda, emission,
    tau, lambda_ave (7 rows), emission_ave (7 rows), tau_int (7 rows),
    z_turnings

Each offset equals the number of rows enabled before it.
"""

from dataclasses import dataclass, field

from kerrlight.constants import CELL_VALUE_NAMES, NUM_CELL_VALUES
from kerrlight.contracts.base import require
from kerrlight.schemas.internal import InternalConfig

__all__ = ['QUANTITY_ORDER', 'ImageLayout']

QUANTITY_ORDER = ("light", "time", "length", "lambda", "emission", "tau",
                  "lambda_ave", "emission_ave", "tau_int", "z_turnings")


@dataclass(frozen=True)
class ImageLayout:
    """Offsets and widths of every enabled image quantity.

    Examples
    --------
    >>> layout = ImageLayout.from_flags(light=True, polarized=False, time=True, tau=True)
    >>> layout.offset("light"), layout.offset("time"), layout.offset("tau")
    (0, 1, 2)
    >>> layout.num_quantities
    3
    """
    offsets: dict = field(default_factory=dict)
    widths: dict = field(default_factory=dict)
    num_quantities: int = 0

    @classmethod
    def from_flags(cls, light=False, polarized=False, time=False, length=False, lambda_=False,
                   emission=False, tau=False, lambda_ave=False, emission_ave=False,
                   tau_int=False, z_turnings=False) -> "ImageLayout":
        enabled = {
            "light": light, "time": time, "length": length, "lambda": lambda_,
            "emission": emission, "tau": tau, "lambda_ave": lambda_ave,
            "emission_ave": emission_ave, "tau_int": tau_int, "z_turnings": z_turnings,
        }
        offsets = {}
        widths = {}
        count = 0
        for name in QUANTITY_ORDER:
            if not enabled[name]:
                continue
            if name == "light":
                width = 4 if polarized else 1
            elif name in ("lambda_ave", "emission_ave", "tau_int"):
                width = NUM_CELL_VALUES
            else:
                width = 1
            offsets[name] = count
            widths[name] = width
            count += width

        layout = cls(offsets=offsets, widths=widths, num_quantities=count)
        layout.check()
        return layout

    @classmethod
    def from_config(cls, config: InternalConfig) -> "ImageLayout":
        image = config.image
        simulation = config.model_type == "simulation"
        return cls.from_flags(
            light=image.light,
            polarized=config.polarization_on and simulation,
            time=image.time,
            length=image.length,
            lambda_=image.lambda_,
            emission=image.emission,
            tau=image.tau,
            lambda_ave=image.lambda_ave and simulation,
            emission_ave=image.emission_ave and simulation,
            tau_int=image.tau_int and simulation,
            z_turnings=image.z_turnings,
        )

    def check(self):
        """Verify the offsets form a strictly increasing partition of the buffer."""
        names = [name for name in QUANTITY_ORDER if name in self.offsets]
        expected = 0
        for name in names:
            require(self.offsets[name] == expected,
                    f"Image contract violated: offset of '{name}' is {self.offsets[name]}, "
                    f"expected {expected}")
            expected += self.widths[name]
        require(expected == self.num_quantities,
                "Image contract violated: quantity widths do not cover the buffer")

    def has(self, name: str) -> bool:
        return name in self.offsets

    def offset(self, name: str) -> int:
        return self.offsets[name]

    def rows(self, name: str) -> slice:
        """Row slice of a quantity in the image buffer."""
        start = self.offsets[name]
        return slice(start, start + self.widths[name])

    @property
    def polarized(self) -> bool:
        return self.widths.get("light") == 4

    def row_names(self) -> list:
        """Human-readable name of every buffer row, in order."""
        names = []
        for name in QUANTITY_ORDER:
            if name not in self.offsets:
                continue
            if name == "light":
                names.extend(["I", "Q", "U", "V"] if self.polarized else ["I"])
            elif self.widths[name] == NUM_CELL_VALUES:
                names.extend(f"{name}_{cell}" for cell in CELL_VALUE_NAMES)
            else:
                names.append(name)
        return names
