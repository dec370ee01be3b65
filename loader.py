# loader.py
"""
Introspection Publisher

Loads a GraphQL schema from either
- a local SDL file (built with graphql-core's build_schema), or
- a live endpoint (the introspection query is POSTed with requests),
and writes up to three artifacts next to the persisted query manifest:
- the full introspection result
- a possible-types map {abstract type: [concrete type names]} for client caches
- a minified introspection keeping only what a normalized cache needs

Each introspection result is content-hashed; when the hash matches the one from
the previous publish, nothing is written.
"""

import hashlib
import json
import time
from typing import Any, Dict, List, Mapping, Optional

import requests
from graphql import build_schema, get_introspection_query, introspection_from_schema

import reporter
from manifest import write_json_atomic

# Built-in scalars every GraphQL schema has; minified output never lists them.
BUILT_IN_SCALARS = {"String", "Int", "Float", "Boolean", "ID"}

ANY_SCALAR = {"kind": "SCALAR", "name": "Any"}


class IntrospectionFetchError(RuntimeError):
    """The endpoint answered the introspection query with a failure."""


def fetch_introspection(
    url: str,
    options: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
    timeout: float = 30,
    retries: int = 3,
    delay: float = 2,
) -> Dict[str, Any]:
    """
    POST the introspection query to url and return the "data" part of the response.
    Connection failures are retried; an HTTP error status is fatal right away and
    carries the response body.
    """
    payload = {"variables": {}, "query": get_introspection_query(**dict(options or {}))}
    request_headers = {"Content-Type": "application/json", "Accept": "application/json"}
    request_headers.update(headers or {})

    attempts = 0
    while True:
        try:
            response = requests.post(url, json=payload, headers=request_headers, timeout=timeout)
            break
        except (requests.ConnectionError, requests.Timeout) as e:
            attempts += 1
            if attempts >= retries:
                raise IntrospectionFetchError(
                    f"Failed to fetch introspection from {url} after {retries} attempts: {e}"
                ) from e
            time.sleep(delay)

    if not response.ok:
        raise IntrospectionFetchError(f"Failed to fetch introspection: {response.text}")

    result = response.json()
    # token lacks the correct scope, schema disabled, ...
    if isinstance(result, dict) and result.get("errors"):
        raise IntrospectionFetchError(f"Failed to fetch introspection: {result['errors']}")
    if not isinstance(result, dict) or "__schema" not in (result.get("data") or {}):
        raise IntrospectionFetchError(
            f"Introspection response from {url} has no data.__schema: {response.text}"
        )
    return result["data"]


def introspect_schema_file(path: str, options: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Build a schema from an SDL file and introspect it locally."""
    with open(path, "r", encoding="utf-8") as f:
        contents = f.read()
    schema = build_schema(contents)
    return introspection_from_schema(schema, **dict(options or {}))


def load_introspection(
    schema_source: str,
    options: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
    timeout: float = 30,
) -> Dict[str, Any]:
    if schema_source.startswith("http"):
        return fetch_introspection(schema_source, options, headers=headers, timeout=timeout)
    return introspect_schema_file(schema_source, options)


def introspection_hash(introspection: Mapping[str, Any]) -> str:
    """Stable digest of an introspection result (key order does not matter)."""
    canonical = json.dumps(introspection, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def to_possible_types(introspection: Mapping[str, Any]) -> Dict[str, List[str]]:
    """Map every interface and union to the names of its concrete types."""
    possible_types: Dict[str, List[str]] = {}
    for supertype in introspection["__schema"]["types"]:
        if supertype.get("possibleTypes"):
            possible_types[supertype["name"]] = [
                subtype["name"] for subtype in supertype["possibleTypes"]
            ]
    return possible_types


# ----------------------------
# Helper: Minify an introspection result for a normalized client cache
#
# The cache only needs type names, field names, field argument names and the
# shape of field types. This keeps:
# - OBJECT / INTERFACE types with their fields (name, type, args) and interfaces
# - UNION types with their possible types
# - SCALAR, ENUM and INPUT_OBJECT types only when asked for; otherwise any
#   reference to them collapses into the "Any" scalar
# - directives only when asked for
# Introspection types (__Schema, __Type, ...) and built-in scalars are dropped.
# ----------------------------
def minify_introspection(
    introspection: Mapping[str, Any],
    include_scalars: bool = False,
    include_enums: bool = False,
    include_inputs: bool = False,
    include_directives: bool = False,
) -> Dict[str, Any]:
    schema = introspection["__schema"]
    kinds = {t["name"]: t["kind"] for t in schema["types"]}

    def keep_kind(kind: str) -> bool:
        if kind == "SCALAR":
            return include_scalars
        if kind == "ENUM":
            return include_enums
        if kind == "INPUT_OBJECT":
            return include_inputs
        return True

    def minify_type_ref(type_ref: Mapping[str, Any]) -> Dict[str, Any]:
        if type_ref["kind"] in ("NON_NULL", "LIST"):
            return {"kind": type_ref["kind"], "ofType": minify_type_ref(type_ref["ofType"])}
        if not keep_kind(type_ref["kind"]) or type_ref["name"] in BUILT_IN_SCALARS:
            return dict(ANY_SCALAR)
        return {"kind": type_ref["kind"], "name": type_ref["name"]}

    def minify_args(args: Optional[List[Mapping[str, Any]]]) -> List[Dict[str, Any]]:
        return [{"name": arg["name"], "type": minify_type_ref(arg["type"])} for arg in args or []]

    types: List[Dict[str, Any]] = []
    for named_type in schema["types"]:
        name, kind = named_type["name"], named_type["kind"]
        if name.startswith("__") or name in BUILT_IN_SCALARS or not keep_kind(kind):
            continue
        if kind in ("OBJECT", "INTERFACE"):
            minified: Dict[str, Any] = {
                "kind": kind,
                "name": name,
                "fields": [
                    {
                        "name": f["name"],
                        "type": minify_type_ref(f["type"]),
                        "args": minify_args(f.get("args")),
                    }
                    for f in named_type.get("fields") or []
                ],
                "interfaces": [
                    {"kind": "INTERFACE", "name": i["name"]}
                    for i in named_type.get("interfaces") or []
                ],
            }
            if kind == "INTERFACE":
                minified["possibleTypes"] = [
                    {"kind": kinds.get(p["name"], "OBJECT"), "name": p["name"]}
                    for p in named_type.get("possibleTypes") or []
                ]
        elif kind == "UNION":
            minified = {
                "kind": kind,
                "name": name,
                "possibleTypes": [
                    {"kind": kinds.get(p["name"], "OBJECT"), "name": p["name"]}
                    for p in named_type.get("possibleTypes") or []
                ],
            }
        elif kind == "ENUM":
            minified = {
                "kind": kind,
                "name": name,
                "enumValues": [{"name": v["name"]} for v in named_type.get("enumValues") or []],
            }
        elif kind == "INPUT_OBJECT":
            minified = {
                "kind": kind,
                "name": name,
                "inputFields": minify_args(named_type.get("inputFields")),
            }
        else:
            minified = {"kind": kind, "name": name}
        types.append(minified)

    if not include_scalars:
        types.append(dict(ANY_SCALAR))

    def root_name(key: str) -> Optional[Dict[str, str]]:
        root = schema.get(key)
        return {"name": root["name"]} if root else None

    return {
        "__schema": {
            "queryType": root_name("queryType"),
            "mutationType": root_name("mutationType"),
            "subscriptionType": root_name("subscriptionType"),
            "types": types,
            "directives": [
                {"name": d["name"], "args": minify_args(d.get("args"))}
                for d in schema.get("directives") or []
            ]
            if include_directives
            else [],
        }
    }


def publish(
    schema_source: str,
    outputs: Mapping[str, Optional[str]],
    previous_hash: Optional[str] = None,
    options: Optional[Mapping[str, Any]] = None,
    minify_options: Optional[Mapping[str, bool]] = None,
    headers: Optional[Mapping[str, str]] = None,
    timeout: float = 30,
) -> str:
    """
    Load the schema and write the configured artifacts.

    Args:
        schema_source: SDL file path, or an http(s) URL to introspect
        outputs: optional paths under "schema_path", "possible_types_path", "minified_path"
        previous_hash: hash returned by the last publish; unchanged schemas skip all writes
        options: passed through to get_introspection_query / introspection_from_schema
        minify_options: include_scalars / include_enums / include_inputs / include_directives

    Returns:
        The introspection content hash.
    """
    introspection = load_introspection(schema_source, options, headers=headers, timeout=timeout)
    new_hash = introspection_hash(introspection)
    if new_hash == previous_hash:
        return new_hash

    if outputs.get("schema_path"):
        write_json_atomic(outputs["schema_path"], introspection)
    if outputs.get("possible_types_path"):
        write_json_atomic(outputs["possible_types_path"], to_possible_types(introspection))
    if outputs.get("minified_path"):
        write_json_atomic(
            outputs["minified_path"],
            minify_introspection(introspection, **dict(minify_options or {})),
        )
    return new_hash


class IntrospectionPublisher:
    """Publishes introspection artifacts and remembers the last content hash."""

    def __init__(self, config: Any, debug: bool = False):
        self.config = config
        self.debug = debug
        self.last_hash: Optional[str] = None

    def publish(self) -> str:
        config = self.config
        previous_hash = self.last_hash
        self.last_hash = publish(
            config.schema,
            {
                "schema_path": config.schema_path,
                "possible_types_path": config.possible_types_path,
                "minified_path": config.minified_path,
            },
            previous_hash=previous_hash,
            options=config.options,
            minify_options=config.minify,
            headers=config.headers,
            timeout=config.timeout,
        )
        if self.debug:
            if self.last_hash == previous_hash:
                reporter.PersistedQueryReporter.log_introspection_unchanged(config.schema)
            else:
                reporter.PersistedQueryReporter.log_introspection_published(
                    config.schema, self.last_hash
                )
        return self.last_hash
