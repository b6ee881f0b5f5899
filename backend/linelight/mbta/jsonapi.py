"""
JSON:API envelope helpers. Relationship payloads arrive as a single object, a list or null;
everything downstream works with flat id lists instead.
"""
from typing import Any

Resource = dict[str, Any]


def extract_relationship_ids(relationship: dict[str, Any] | None) -> list[str]:
    """Flatten a relationship payload ({data: obj | [obj] | null}) to its non-empty ids."""
    if not isinstance(relationship, dict):
        return []
    data = relationship.get("data")
    if data is None:
        return []
    if isinstance(data, list):
        return [entry["id"] for entry in data if isinstance(entry, dict) and isinstance(entry.get("id"), str) and entry["id"]]
    if isinstance(data, dict) and isinstance(data.get("id"), str) and data["id"]:
        return [data["id"]]
    return []


def relationship_ids(resource: Resource | None, name: str) -> list[str]:
    if not resource:
        return []
    relationships = resource.get("relationships") or {}
    return extract_relationship_ids(relationships.get(name))


def first_relationship_id(resource: Resource | None, name: str) -> str | None:
    ids = relationship_ids(resource, name)
    return ids[0] if ids else None


def attributes(resource: Resource | None) -> dict[str, Any]:
    if not resource:
        return {}
    attrs = resource.get("attributes")
    return attrs if isinstance(attrs, dict) else {}


def resource_list(response: dict[str, Any] | None) -> list[Resource]:
    """Return `data` as a list whether the envelope holds one resource or many."""
    if not response:
        return []
    data = response.get("data")
    if data is None:
        return []
    if isinstance(data, list):
        return [r for r in data if isinstance(r, dict)]
    return [data] if isinstance(data, dict) else []


def included_of_type(response: dict[str, Any] | None, resource_type: str) -> dict[str, Resource]:
    """Index the envelope's `included` resources of one type by id."""
    if not response:
        return {}
    found: dict[str, Resource] = {}
    for resource in response.get("included") or []:
        if isinstance(resource, dict) and resource.get("type") == resource_type and resource.get("id"):
            found[resource["id"]] = resource
    return found
