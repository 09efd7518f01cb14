from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from common.types import AffineTransform, GeoBounds, GeoPoint, PixelPoint


def pixel_to_geo(pixel: PixelPoint, T: AffineTransform) -> GeoPoint:
    """Apply the calibration: lat = a*x + b*y + c, lon = d*x + e*y + f."""
    x, y = pixel.x, pixel.y
    return GeoPoint(lat=T.a * x + T.b * y + T.c, lon=T.d * x + T.e * y + T.f)


def image_extent_to_geo_bounds(width: float, height: float, T: AffineTransform) -> GeoBounds:
    """
    GPS bounding box of the four image corners.

    Exact only when T has no rotation/shear; otherwise the projected image
    is a parallelogram and this returns its axis-aligned envelope.
    """
    corners = [
        pixel_to_geo(PixelPoint(0.0, 0.0), T),
        pixel_to_geo(PixelPoint(width, 0.0), T),
        pixel_to_geo(PixelPoint(0.0, height), T),
        pixel_to_geo(PixelPoint(width, height), T),
    ]
    lons = [c.lon for c in corners]
    lats = [c.lat for c in corners]
    return GeoBounds(min_lon=min(lons), max_lon=max(lons), min_lat=min(lats), max_lat=max(lats))


@dataclass(frozen=True)
class ImagePlacement:
    """Where to draw the calibrated floor plan on an EPSG:4326 map."""
    bounds: GeoBounds
    zoom: int

    @property
    def center(self) -> GeoPoint:
        return self.bounds.center

    def to_dict(self) -> Dict[str, Any]:
        c = self.center
        return {
            "crs": "EPSG:4326",
            "extent": list(self.bounds.extent),
            "bounds": self.bounds.to_dict(),
            "center": {"lat": c.lat, "lon": c.lon},
            "zoom": self.zoom,
        }


def image_placement(width: float, height: float, T: AffineTransform, zoom: int = 18) -> ImagePlacement:
    return ImagePlacement(bounds=image_extent_to_geo_bounds(width, height, T), zoom=int(zoom))
