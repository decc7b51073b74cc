from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Final, Literal, Optional

LatHemisphere = Literal["N", "S"]
LonHemisphere = Literal["E", "W"]

DEFAULT_TILE_SUFFIX: Final[str] = "DSM"
RASTER_EXTENSIONS: Final[frozenset[str]] = frozenset({"tif", "tiff"})

_TILE_ID_RE: Final[re.Pattern[str]] = re.compile(
    r"^(?P<prefix>[A-Za-z0-9]+)_"
    r"(?P<lat_hemisphere>[NS])(?P<lat>\d{2,3})"
    r"(?P<lon_hemisphere>[EW])(?P<lon>\d{3})"
    r"_(?P<suffix>[A-Za-z0-9]+)$"
)


@dataclass(frozen=True)
class Latitude:
    hemisphere: LatHemisphere
    degrees: int

    def __post_init__(self) -> None:
        if self.hemisphere not in ("N", "S"):
            raise ValueError(f"Invalid latitude hemisphere: {self.hemisphere!r}")
        if not (0 <= int(self.degrees) <= 90):
            raise ValueError(f"Invalid latitude degrees: {self.degrees}")

    @property
    def signed(self) -> int:
        return int(self.degrees) if self.hemisphere == "N" else -int(self.degrees)


@dataclass(frozen=True)
class Longitude:
    hemisphere: LonHemisphere
    degrees: int

    def __post_init__(self) -> None:
        if self.hemisphere not in ("E", "W"):
            raise ValueError(f"Invalid longitude hemisphere: {self.hemisphere!r}")
        if not (0 <= int(self.degrees) <= 180):
            raise ValueError(f"Invalid longitude degrees: {self.degrees}")

    @property
    def signed(self) -> int:
        return int(self.degrees) if self.hemisphere == "E" else -int(self.degrees)


@dataclass(frozen=True)
class Coordinate:
    """South-west corner of a 1x1-degree tile, as encoded in its identifier."""

    lat: Latitude
    lon: Longitude

    @property
    def signed_lat(self) -> int:
        return self.lat.signed

    @property
    def signed_lon(self) -> int:
        return self.lon.signed

    def format(
        self,
        *,
        prefix: str = "ALPSMLC30",
        suffix: str = DEFAULT_TILE_SUFFIX,
        lat_digits: int = 3,
    ) -> str:
        if lat_digits not in (2, 3):
            raise ValueError("lat_digits must be 2 or 3")
        return (
            f"{prefix}_"
            f"{self.lat.hemisphere}{self.lat.degrees:0{lat_digits}d}"
            f"{self.lon.hemisphere}{self.lon.degrees:03d}"
            f"_{suffix}"
        )


def tile_stem(key: str) -> Optional[str]:
    """Final path segment of a raster object key without its extension.

    Only ``.tif``/``.tiff`` keys (any case) are rasters; sidecars such as
    ``.tif.aux.xml`` or ``.xml`` and extension-less keys return ``None``.
    """

    name = PurePosixPath(key).name
    stem, dot, extension = name.rpartition(".")
    if not dot or extension.lower() not in RASTER_EXTENSIONS:
        return None
    return stem


def parse_tile_id(
    identifier: str, *, suffix: Optional[str] = DEFAULT_TILE_SUFFIX
) -> Optional[Coordinate]:
    """Parse ``ALPSMLC30_N052E004_DSM``-style identifiers.

    Returns ``None`` for anything that is not an elevation tile (directory
    markers, metadata files, other products). Passing ``suffix=None`` accepts
    any alphanumeric suffix.
    """

    match = _TILE_ID_RE.match(identifier or "")
    if match is None:
        return None
    if suffix is not None and match.group("suffix") != suffix:
        return None

    lat_degrees = int(match.group("lat"))
    lon_degrees = int(match.group("lon"))
    if lat_degrees > 90 or lon_degrees > 180:
        return None

    return Coordinate(
        lat=Latitude(hemisphere=match.group("lat_hemisphere"), degrees=lat_degrees),  # type: ignore[arg-type]
        lon=Longitude(hemisphere=match.group("lon_hemisphere"), degrees=lon_degrees),  # type: ignore[arg-type]
    )
