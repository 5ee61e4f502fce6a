from collections.abc import Callable, Iterable
from dataclasses import dataclass
from importlib import metadata

from .logger_setup import get_logger

PROBE_DRIVER_GROUP = "probe_cli.probes"

logger = get_logger(__name__)


@dataclass(frozen=True)
class DebugProbeInfo:
    identifier: str
    vendor_id: int
    product_id: int
    serial_number: str | None = None
    probe_type: str = "unknown"

    def __str__(self) -> str:
        serial = self.serial_number or "--"
        return f"{self.identifier} -- {self.vendor_id:04x}:{self.product_id:04x}:{serial} ({self.probe_type})"


ProbeDriver = Callable[[], Iterable[DebugProbeInfo]]


def iter_probe_drivers() -> list[tuple[str, ProbeDriver]]:
    drivers = []
    for entry_point in metadata.entry_points().select(group=PROBE_DRIVER_GROUP):
        try:
            drivers.append((entry_point.name, entry_point.load()))
        except Exception:
            logger.warning("Probe driver %s could not be loaded", entry_point.name, exc_info=True)
    return drivers


class Lister:
    """Enumerates the debug probes of every installed driver."""

    def __init__(self, drivers: list[tuple[str, ProbeDriver]] | None = None) -> None:
        self._drivers = drivers

    @property
    def drivers(self) -> list[tuple[str, ProbeDriver]]:
        if self._drivers is None:
            self._drivers = iter_probe_drivers()
        return self._drivers

    def list_all(self) -> list[DebugProbeInfo]:
        probes: list[DebugProbeInfo] = []
        for name, driver in self.drivers:
            try:
                found = list(driver())
            except Exception:
                logger.warning("Probe driver %s failed to list probes", name, exc_info=True)
                continue
            logger.debug("Probe driver %s found %d probe(s)", name, len(found))
            probes.extend(found)
        return probes
