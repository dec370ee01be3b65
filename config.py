"""
Configuration for the persisted query pipeline.

Configuration precedence (highest to lowest):
  1. Explicit arguments / CLI flags
  2. Environment variables (a .env file is loaded first)
  3. DEFAULT_SETTINGS (this file)

Settings reference:
  GQL_PERSISTED_OUTPUT_PATH        Manifest file path (default: persisted-queries.json)
  GQL_PERSISTED_ENABLED            Turn the whole pipeline off with false/0/no/off
  GQL_PERSISTED_REMOVE_SOURCE      Drop the inline query text from rewritten call sites
  GQL_PERSISTED_ADD_TYPENAME       Select __typename in every nested selection set
  GQL_PERSISTED_PURE               Mark rewritten calls with /* @__PURE__ */
  GQL_PERSISTED_DEBUG              Print progress while indexing and publishing
  GQL_SCHEMA                       SDL file or URL used for introspection output
  GQL_INTROSPECTION_PATH           Where to write the full introspection JSON
  GQL_POSSIBLE_TYPES_PATH          Where to write the possible-types JSON
  GQL_MINIFIED_INTROSPECTION_PATH  Where to write the minified introspection JSON
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv

DEFAULT_SETTINGS: Dict[str, Any] = {
    "OUTPUT_PATH": "persisted-queries.json",
    "ENABLED": True,
    "REMOVE_SOURCE": False,
    "ADD_TYPENAME": False,
    "PURE": False,
    "DEBUG": False,
    "EXTENSIONS": (".ts", ".tsx"),
    "DEBOUNCE_SECONDS": 0.5,
    "INTROSPECTION_TIMEOUT": 30,
}

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off", ""}


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ValueError(f"Expected a boolean value, got {value!r}")


@dataclass
class IntrospectionConfig:
    """Where the schema comes from and which introspection artifacts to write."""

    schema: str
    schema_path: Optional[str] = None
    possible_types_path: Optional[str] = None
    minified_path: Optional[str] = None
    # passed to get_introspection_query / introspection_from_schema
    options: Dict[str, Any] = field(default_factory=dict)
    # include_scalars / include_enums / include_inputs / include_directives
    minify: Dict[str, bool] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: float = DEFAULT_SETTINGS["INTROSPECTION_TIMEOUT"]


@dataclass
class PersistedQueriesOptions:
    output_path: str = DEFAULT_SETTINGS["OUTPUT_PATH"]
    enabled: bool = DEFAULT_SETTINGS["ENABLED"]
    remove_source: bool = DEFAULT_SETTINGS["REMOVE_SOURCE"]
    add_typename: bool = DEFAULT_SETTINGS["ADD_TYPENAME"]
    introspection: Optional[IntrospectionConfig] = None
    pure_annotation: bool = DEFAULT_SETTINGS["PURE"]
    extensions: Tuple[str, ...] = DEFAULT_SETTINGS["EXTENSIONS"]
    dev_server: bool = False
    debounce: float = DEFAULT_SETTINGS["DEBOUNCE_SECONDS"]
    debug: bool = DEFAULT_SETTINGS["DEBUG"]


def load_options_from_env(**overrides: Any) -> PersistedQueriesOptions:
    """
    Build options from the environment (and .env), then apply explicit overrides.
    Overrides that are None are ignored so CLI flags left unset fall through.
    """
    load_dotenv()

    options = PersistedQueriesOptions(
        output_path=os.getenv("GQL_PERSISTED_OUTPUT_PATH") or DEFAULT_SETTINGS["OUTPUT_PATH"],
        enabled=parse_bool(os.getenv("GQL_PERSISTED_ENABLED"), DEFAULT_SETTINGS["ENABLED"]),
        remove_source=parse_bool(
            os.getenv("GQL_PERSISTED_REMOVE_SOURCE"), DEFAULT_SETTINGS["REMOVE_SOURCE"]
        ),
        add_typename=parse_bool(
            os.getenv("GQL_PERSISTED_ADD_TYPENAME"), DEFAULT_SETTINGS["ADD_TYPENAME"]
        ),
        pure_annotation=parse_bool(os.getenv("GQL_PERSISTED_PURE"), DEFAULT_SETTINGS["PURE"]),
        debug=parse_bool(os.getenv("GQL_PERSISTED_DEBUG"), DEFAULT_SETTINGS["DEBUG"]),
    )

    schema = os.getenv("GQL_SCHEMA")
    if schema:
        options.introspection = IntrospectionConfig(
            schema=schema,
            schema_path=os.getenv("GQL_INTROSPECTION_PATH") or None,
            possible_types_path=os.getenv("GQL_POSSIBLE_TYPES_PATH") or None,
            minified_path=os.getenv("GQL_MINIFIED_INTROSPECTION_PATH") or None,
        )

    for key, value in overrides.items():
        if value is None:
            continue
        if not hasattr(options, key):
            raise TypeError(f"Unknown option: {key}")
        setattr(options, key, value)
    return options
