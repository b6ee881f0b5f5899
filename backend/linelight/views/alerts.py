"""Alert lookups shared by the station board and line overview."""
from linelight.mbta.jsonapi import attributes, relationship_ids

DEFAULT_ALERT_HEADER = "Service alert"


def _informed_entities(alert: dict) -> list[dict]:
    entities = attributes(alert).get("informed_entity")
    return [e for e in entities if isinstance(e, dict)] if isinstance(entities, list) else []


def alert_route_ids(alert: dict) -> set[str]:
    """Routes an alert affects: the routes relationship plus informed_entity route ids."""
    ids = set(relationship_ids(alert, "routes"))
    ids.update(e["route"] for e in _informed_entities(alert) if e.get("route"))
    return ids


def alert_stop_ids(alert: dict) -> set[str]:
    ids = set(relationship_ids(alert, "stops"))
    ids.update(e["stop"] for e in _informed_entities(alert) if e.get("stop"))
    return ids


def alerts_for_routes(alerts: list[dict] | None, route_ids) -> list[dict]:
    wanted = set(route_ids)
    return [alert for alert in alerts or [] if alert_route_ids(alert) & wanted]


def severity_label(severity) -> str:
    """Map the 0-10 numeric severity to minor / moderate / major."""
    if not isinstance(severity, (int, float)):
        return "minor"
    if severity >= 7:
        return "major"
    if severity >= 5:
        return "moderate"
    return "minor"
