"""Service: distance-space binding.

Maps the caller's space selector onto the kernel the engine understands.
Cosine has no kernel of its own: it binds inner product and asks the
owning handle to normalise every vector before it reaches the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from numbers import Integral

from hnswbridge.domain.errors import InvalidConfigurationError
from hnswbridge.domain.models import SpaceType

_KERNELS: dict[SpaceType, str] = {
    SpaceType.L2: "l2",
    SpaceType.IP: "ip",
    SpaceType.COSINE: "ip",
}

_ALIASES: dict[str, SpaceType] = {
    "euclidean": SpaceType.L2,
    "inner_product": SpaceType.IP,
    "dot_product": SpaceType.IP,
}


@dataclass(frozen=True)
class DistanceSpace:
    """A distance kernel bound to a fixed dimensionality."""

    selector: SpaceType
    kernel: str
    dim: int

    @property
    def normalize(self) -> bool:
        return self.selector is SpaceType.COSINE


def parse_selector(selector: SpaceType | str | int) -> SpaceType:
    """Accept a ``SpaceType``, its string value/alias, or the ABI integer code."""
    if isinstance(selector, SpaceType):
        return selector
    if isinstance(selector, bool):
        raise InvalidConfigurationError(f"Invalid space selector: {selector!r}")
    if isinstance(selector, Integral):
        if 0 <= selector < len(SpaceType):
            return SpaceType.from_code(int(selector))
    elif isinstance(selector, str):
        name = selector.strip().lower()
        if name in _ALIASES:
            return _ALIASES[name]
        try:
            return SpaceType(name)
        except ValueError:
            pass
    raise InvalidConfigurationError(
        f"Space name must be one of l2, ip, or cosine (got {selector!r})"
    )


def resolve_space(selector: SpaceType | str | int, dim: int) -> DistanceSpace:
    """Bind *selector* to a kernel of dimensionality *dim*."""
    space_type = parse_selector(selector)
    if isinstance(dim, bool) or not isinstance(dim, Integral) or dim <= 0:
        raise InvalidConfigurationError(f"Dimension must be positive, got {dim!r}")
    return DistanceSpace(selector=space_type, kernel=_KERNELS[space_type], dim=int(dim))
