from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Mapping, Optional

from aw3d30_parquet.coordinates import Coordinate, Latitude, Longitude


@dataclass(frozen=True)
class HemisphereInterval:
    """Closed interval of unsigned degrees within one hemisphere."""

    hemisphere: str
    min_degrees: int
    max_degrees: int

    def __post_init__(self) -> None:
        if self.hemisphere not in ("N", "S", "E", "W"):
            raise ValueError(f"Invalid hemisphere: {self.hemisphere!r}")
        if self.min_degrees < 0 or self.max_degrees < self.min_degrees:
            raise ValueError(
                f"Invalid interval [{self.min_degrees}, {self.max_degrees}]"
            )

    def contains(self, value: Latitude | Longitude) -> bool:
        return (
            value.hemisphere == self.hemisphere
            and self.min_degrees <= value.degrees <= self.max_degrees
        )


@dataclass(frozen=True)
class RegionBand:
    lat: HemisphereInterval
    lon: HemisphereInterval

    def __post_init__(self) -> None:
        if self.lat.hemisphere not in ("N", "S"):
            raise ValueError("Band latitude must be tagged N or S")
        if self.lon.hemisphere not in ("E", "W"):
            raise ValueError("Band longitude must be tagged E or W")

    def contains(self, coordinate: Coordinate) -> bool:
        return self.lat.contains(coordinate.lat) and self.lon.contains(coordinate.lon)


@dataclass(frozen=True)
class Region:
    """A named union of rectangular bands.

    ``bands=None`` means the whole world; an empty tuple matches nothing.
    """

    name: str
    bands: Optional[tuple[RegionBand, ...]] = None


def band(
    lat_hemisphere: str,
    lat_min: int,
    lat_max: int,
    lon_hemisphere: str,
    lon_min: int,
    lon_max: int,
) -> RegionBand:
    return RegionBand(
        lat=HemisphereInterval(lat_hemisphere, lat_min, lat_max),
        lon=HemisphereInterval(lon_hemisphere, lon_min, lon_max),
    )


def matches(region: Region, coordinate: Coordinate) -> bool:
    if region.bands is None:
        return True
    return any(b.contains(coordinate) for b in region.bands)


WORLD: Final[Region] = Region(name="world")
EUROPE: Final[Region] = Region(
    name="europe",
    bands=(
        band("N", 34, 71, "W", 0, 25),
        band("N", 34, 71, "E", 0, 49),
    ),
)
NETHERLANDS: Final[Region] = Region(
    name="netherlands",
    bands=(band("N", 50, 53, "E", 3, 7),),
)

REGION_PRESETS: Final[Mapping[str, Region]] = {
    region.name: region for region in (WORLD, EUROPE, NETHERLANDS)
}


def resolve_region(
    name: str, *, extra: Optional[Mapping[str, Region]] = None
) -> Region:
    normalized = (name or "").strip().lower()
    if extra and normalized in extra:
        return extra[normalized]
    if normalized in REGION_PRESETS:
        return REGION_PRESETS[normalized]
    available = sorted({*REGION_PRESETS, *(extra or {})})
    raise ValueError(f"Unknown region {name!r}; available: {', '.join(available)}")
