"""
Persisted Queries Plugin

Glue between a host bundler and the pipeline. The host calls:

    plugin = PersistedQueriesPlugin(options, host)
    plugin.build_start()                       # publish introspection, if configured
    result = plugin.transform(code, file_id)   # once per module; None = unchanged
    plugin.file_changed(file_id)               # dev server: a file was edited
    plugin.build_end()                         # write the manifest

Per transform: extract call sites and imports, index every fragment they need,
canonicalize and hash each operation, record it in the manifest, rewrite the
call sites. In dev server mode the manifest is written (debounced) on every
transform, since the host never reaches build_end.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import reporter
from canonicalizer import persist
from config import PersistedQueriesOptions
from extractor import OperationRecord, extract_queries, offset_to_line
from indexer import BuildContext, FileSystemHost, ModuleHost, read_source_file
from loader import IntrospectionFetchError, IntrospectionPublisher
from manifest import ManifestStore
from rewriter import rewrite_source

PLUGIN_NAME = "gql-persisted-queries"


@dataclass
class TransformResult:
    code: str
    map: Dict[str, Any]
    queries: List[Dict[str, Any]]


class PersistedQueriesPlugin:
    name = PLUGIN_NAME

    def __init__(self, options: PersistedQueriesOptions, host: Optional[ModuleHost] = None):
        self.options = options
        self.host = host or FileSystemHost()
        self.context = BuildContext(debug=options.debug)
        self.manifest: Optional[ManifestStore] = None
        self.publisher: Optional[IntrospectionPublisher] = None
        if not options.enabled:
            return
        if options.introspection is not None:
            self.publisher = IntrospectionPublisher(options.introspection, debug=options.debug)
        self.manifest = ManifestStore(
            options.output_path,
            debounce=options.debounce,
            on_flush=self._on_manifest_flush,
        )

    @property
    def enabled(self) -> bool:
        return self.options.enabled

    def should_transform(self, code: str, file_id: str) -> bool:
        if not file_id.endswith(tuple(self.options.extensions)):
            return False
        if "node_modules" in file_id:
            return False
        return "graphql" in code

    def build_start(self) -> Optional[str]:
        """Start a fresh build: drop indexed files and publish introspection artifacts."""
        if not self.enabled:
            return None
        self.context.reset()
        if self.publisher is None:
            return None
        return self.publisher.publish()

    def transform(self, code: str, file_id: str) -> Optional[TransformResult]:
        if not self.enabled or not self.should_transform(code, file_id):
            return None

        records = list(extract_queries(code, file_id=file_id))
        if not records:
            return None

        replacements: List[Tuple[OperationRecord, str, str]] = []
        with self.context.lock:
            load = read_source_file if self.options.dev_server else None
            self.context.index_file(code, file_id, self.host, load=load)
            for record in records:
                entry = persist(
                    record, self.context.registry, add_typename=self.options.add_typename
                )
                replacements.append((record, entry["hash"], entry["query"]))

        self.manifest.merge({query_hash: text for _, query_hash, text in replacements})

        queries: List[Dict[str, Any]] = []
        for record, query_hash, text in replacements:
            queries.append(
                {
                    "name": record.name,
                    "hash": query_hash,
                    "query": text,
                    "span": record.span,
                    "line": offset_to_line(code, record.span[0]),
                }
            )
            if self.options.debug:
                reporter.PersistedQueryReporter.log_query_persisted(record.name, query_hash)

        if self.options.dev_server:
            self.manifest.schedule_flush()

        result = rewrite_source(
            code,
            replacements,
            remove_source=self.options.remove_source,
            pure=self.options.pure_annotation,
            source_name=file_id,
        )
        return TransformResult(code=result.code, map=result.map, queries=queries)

    def file_changed(self, file_id: str) -> None:
        """Dev server: forget an edited file so the next transform re-extracts it."""
        self.context.invalidate(file_id)

    def build_end(self) -> None:
        if not self.enabled:
            return
        self.manifest.flush()

    def close(self) -> None:
        if self.manifest is not None:
            self.manifest.close()

    def _on_manifest_flush(self) -> None:
        if self.options.debug:
            reporter.PersistedQueryReporter.log_manifest_written(
                self.manifest.path, len(self.manifest)
            )
        # the dev server never calls build_start again; refresh introspection with the manifest
        if self.options.dev_server and self.publisher is not None:
            try:
                self.publisher.publish()
            except (IntrospectionFetchError, OSError) as e:
                reporter.print_error(f"Failed to publish introspection: {e}")
