"""Decoded route geometry for a line, served from cache with a live fallback."""
import logging

from linelight.cache.resource_cache import ResourceCache
from linelight.data.geo import decode_polyline
from linelight.mbta.jsonapi import attributes, resource_list
from linelight.views.models import Coordinate, LineShapeResponse

logger = logging.getLogger(__name__)

SHAPE_PAGE_LIMIT = 2000


def decode_shapes(shapes: list[dict]) -> list[list[dict[str, float]]]:
    """Decode each shape's polyline; paths with fewer than two points are dropped."""
    paths = []
    for shape in shapes:
        encoded = attributes(shape).get("polyline")
        if not isinstance(encoded, str):
            continue
        path = decode_polyline(encoded)
        if len(path) >= 2:
            paths.append(path)
    return paths


def _hex_color(value) -> str | None:
    if not isinstance(value, str) or not value:
        return None
    return f"#{value.lstrip('#').upper()}"


async def build_line_shapes(cache: ResourceCache, client, line_id: str) -> LineShapeResponse | None:
    """
    Cached paths for the route id when present; otherwise fetch and decode them and publish a
    new shapes map with this route added. None when nothing could be decoded.
    """
    shapes_entry = cache.get_shapes()
    paths = shapes_entry.data.get(line_id) if shapes_entry else None
    if not paths:
        resp = await client.get_shapes({"filter[route]": line_id, "page[limit]": SHAPE_PAGE_LIMIT})
        paths = decode_shapes(resource_list(resp))
        if not paths:
            return None
        current = cache.get_shapes()
        cache.set_shapes({**(current.data if current else {}), line_id: paths})
        logger.info("telemetry shapes_fetched route=%s paths=%s", line_id, len(paths), extra={"route": line_id})

    routes_entry = cache.get_routes()
    route = next((r for r in routes_entry.data if r["id"] == line_id), None) if routes_entry else None
    attrs = attributes(route)
    return LineShapeResponse(
        line_id=line_id,
        color=_hex_color(attrs.get("color")),
        text_color=_hex_color(attrs.get("text_color")),
        shapes=[[Coordinate(**point) for point in path] for path in paths],
    )
