#!/usr/bin/env python3
"""
CLI for building GraphQL persisted queries

This CLI runs the persisted query pipeline over a source tree without a bundler:
- Finds every TypeScript file with graphql(...) calls
- Canonicalizes and hashes each operation and merges it into the manifest
- Optionally rewrites the files (in place or into an output directory) with source maps
- Optionally publishes introspection artifacts for a schema file or endpoint

Usage:
    python cli.py --path src                          # Update the manifest only
    python cli.py --path src --dry-run                # Show what would be persisted
    python cli.py --path src --write                  # Rewrite call sites in place
    python cli.py --path src --out-dir build          # Write rewritten copies + .map files
    python cli.py --schema schema.graphql --possible-types-output possible-types.json
"""

import argparse
import fnmatch
import json
import os
import sys
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
from graphql import GraphQLError

from config import IntrospectionConfig, PersistedQueriesOptions, load_options_from_env
from indexer import DuplicateDefinitionError, FileSystemHost, UnresolvedFragmentError
from loader import IntrospectionFetchError
from plugin import PersistedQueriesPlugin, TransformResult
from reporter import PersistedQueryReporter, print_error, report_file_error, report_results

DEFAULT_EXCLUSIONS = [
    "node_modules",
    ".git",
    "dist",
    "build",
    ".next",
    ".turbo",
    "coverage",
    "__pycache__",
]

PIPELINE_ERRORS = (UnresolvedFragmentError, DuplicateDefinitionError, GraphQLError, ValueError)


def find_files(
    target_path: str,
    extensions: Sequence[str],
    exclude_patterns: Optional[List[str]] = None,
) -> List[str]:
    """
    Find all source files in the target path, excluding specified patterns.

    Args:
        target_path: Path to search (file or directory)
        extensions: File extensions to include (e.g., [".ts", ".tsx"])
        exclude_patterns: Directory name patterns to skip (e.g., ["node_modules", "dist"])

    Returns:
        Sorted list of file paths to process
    """
    files = []
    exclude_patterns = exclude_patterns or []
    suffixes = tuple(extensions)

    if os.path.isfile(target_path):
        if target_path.endswith(suffixes):
            files.append(os.path.abspath(target_path))
    elif os.path.isdir(target_path):
        for root, dirs, filenames in os.walk(target_path):
            dirs[:] = [
                d for d in dirs if not any(fnmatch.fnmatch(d, pattern) for pattern in exclude_patterns)
            ]
            for filename in filenames:
                if filename.endswith(suffixes) and not filename.endswith(".d.ts"):
                    files.append(os.path.abspath(os.path.join(root, filename)))

    return sorted(files)


def parse_pairs(values: Optional[List[str]], flag: str) -> Dict[str, str]:
    """Parse repeated KEY=VALUE flags such as --alias @/=src/ or --header Authorization=..."""
    pairs: Dict[str, str] = {}
    for value in values or []:
        key, sep, target = value.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid {flag} {value!r}, expected KEY=VALUE")
        pairs[key] = target
    return pairs


class PersistCLI:
    """Runs the plugin over a directory the way a bundler would over its module graph."""

    def __init__(self, options: PersistedQueriesOptions, root: str = ".", aliases=None):
        self.options = options
        self.root = root
        self.host = FileSystemHost(root=root, aliases=aliases)
        self.plugin = PersistedQueriesPlugin(options, host=self.host)
        self.exclude_patterns: List[str] = list(DEFAULT_EXCLUSIONS)
        self.verbose = options.debug
        self.failures: List[Tuple[str, str]] = []

    def run_transforms(self, target_path: str) -> Dict[str, TransformResult]:
        """Transform every file; rewritten code is only collected, never written here."""
        files = find_files(target_path, self.options.extensions, self.exclude_patterns)
        outputs: Dict[str, TransformResult] = {}
        for file_path in files:
            with open(file_path, "r", encoding="utf-8") as f:
                code = f.read()
            if self.verbose:
                PersistedQueryReporter.print_processing_file(file_path)
            try:
                result = self.plugin.transform(code, file_path)
            except PIPELINE_ERRORS as e:
                report_file_error(file_path, str(e))
                self.failures.append((file_path, str(e)))
                continue
            if result is not None:
                outputs[file_path] = result
        return outputs

    def write_outputs(
        self,
        outputs: Dict[str, TransformResult],
        target_path: str,
        out_dir: Optional[str] = None,
        source_maps: bool = False,
    ) -> None:
        base = target_path if os.path.isdir(target_path) else os.path.dirname(target_path)
        for file_path, result in outputs.items():
            destination = file_path
            if out_dir:
                relative = os.path.relpath(file_path, os.path.abspath(base))
                destination = os.path.join(out_dir, relative)
                os.makedirs(os.path.dirname(os.path.abspath(destination)), exist_ok=True)
            with open(destination, "w", encoding="utf-8") as f:
                f.write(result.code)
            if source_maps:
                with open(destination + ".map", "w", encoding="utf-8") as f:
                    json.dump(dict(result.map, file=os.path.basename(destination)), f)
            PersistedQueryReporter.print_rewritten_file(destination)

    @staticmethod
    def summarize(outputs: Dict[str, TransformResult]) -> List[Dict[str, Any]]:
        return [
            {
                "file": file_path,
                "queries": [
                    {k: q[k] for k in ("name", "hash", "line", "query")} for q in result.queries
                ],
            }
            for file_path, result in outputs.items()
        ]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build GraphQL persisted queries from graphql(...) calls in TypeScript sources",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python cli.py --path src                         # Update the manifest only
  python cli.py --path src --dry-run --print       # Preview persisted queries
  python cli.py --path src --write --remove-source # Rewrite call sites, hash only
  python cli.py --schema http://localhost:4000/graphql --introspection-output schema.json
        """,
    )

    # Target and options
    parser.add_argument("--path", type=str, default=None, help="File or directory to process")
    parser.add_argument("--output", type=str, default=None, help="Manifest file path")
    parser.add_argument(
        "--exclude", type=str, default="", help="Comma-separated directory patterns to exclude"
    )
    parser.add_argument(
        "--extensions",
        type=str,
        default=None,
        help="Comma-separated file extensions to process (default: .ts,.tsx)",
    )
    parser.add_argument(
        "--alias",
        action="append",
        default=None,
        help="Import alias PREFIX=DIR relative to --root (repeatable, e.g. @/=src/)",
    )
    parser.add_argument("--root", type=str, default=".", help="Project root for --alias")
    parser.add_argument(
        "--remove-source",
        action="store_true",
        default=None,
        help="Leave only the hash at rewritten call sites",
    )
    parser.add_argument(
        "--add-typename",
        action="store_true",
        default=None,
        help="Select __typename in every nested selection set",
    )
    parser.add_argument(
        "--pure",
        action="store_true",
        default=None,
        help="Annotate rewritten calls with /* @__PURE__ */",
    )

    # Output modes
    parser.add_argument("--write", action="store_true", help="Rewrite source files in place")
    parser.add_argument(
        "--out-dir", type=str, default=None, help="Write rewritten copies into this directory"
    )
    parser.add_argument(
        "--source-maps", action="store_true", help="Write a .map file next to each rewritten file"
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Show persisted queries without writing anything"
    )
    parser.add_argument(
        "--print", action="store_true", help="Force human-readable output even when piped"
    )
    parser.add_argument("--verbose", action="store_true", default=None, help="Verbose output")

    # Introspection
    parser.add_argument("--schema", type=str, default=None, help="SDL file or endpoint URL")
    parser.add_argument("--introspection-output", type=str, default=None)
    parser.add_argument("--possible-types-output", type=str, default=None)
    parser.add_argument("--minified-output", type=str, default=None)
    parser.add_argument(
        "--header",
        action="append",
        default=None,
        help="HTTP header NAME=VALUE for endpoint introspection (repeatable)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        options = load_options_from_env(
            output_path=args.output,
            remove_source=args.remove_source,
            add_typename=args.add_typename,
            pure_annotation=args.pure,
            debug=args.verbose,
        )
        if args.extensions:
            options.extensions = tuple(
                e.strip() if e.strip().startswith(".") else "." + e.strip()
                for e in args.extensions.split(",")
                if e.strip()
            )
        if args.schema:
            options.introspection = IntrospectionConfig(
                schema=args.schema,
                schema_path=args.introspection_output,
                possible_types_path=args.possible_types_output,
                minified_path=args.minified_output,
                headers=parse_pairs(args.header, "--header"),
            )
        aliases = parse_pairs(args.alias, "--alias")
    except ValueError as e:
        print_error(str(e))
        return 1

    if not options.enabled:
        PersistedQueryReporter.print_disabled()
        return 0

    if args.dry_run and options.introspection is not None:
        # dry runs never write introspection artifacts
        options.introspection = None

    if args.verbose:
        PersistedQueryReporter.print_banner()

    cli = PersistCLI(options, root=args.root, aliases=aliases)
    cli.exclude_patterns.extend(p.strip() for p in args.exclude.split(",") if p.strip())

    try:
        cli.plugin.build_start()
    except IntrospectionFetchError as e:
        print_error(str(e))
        return 2
    except (requests.RequestException, OSError, GraphQLError) as e:
        print_error(f"Failed to publish introspection: {e}")
        return 2

    if args.path is None:
        return 0

    if args.verbose:
        PersistedQueryReporter.print_scan_start(args.path)
    entries_before = len(cli.plugin.manifest)
    outputs = cli.run_transforms(args.path)

    if args.dry_run:
        PersistedQueryReporter.print_dry_run_header()
        report_results(cli.summarize(outputs), force_print=args.print)
        return 1 if cli.failures else 0

    cli.plugin.build_end()
    if args.write or args.out_dir:
        cli.write_outputs(outputs, args.path, out_dir=args.out_dir, source_maps=args.source_maps)

    if not outputs:
        PersistedQueryReporter.print_no_files_found()
    else:
        report_results(cli.summarize(outputs), force_print=args.print)
        PersistedQueryReporter.print_summary(
            len(outputs),
            sum(len(result.queries) for result in outputs.values()),
            len(cli.plugin.manifest) - entries_before,
            options.output_path,
        )
    PersistedQueryReporter.print_failures(len(cli.failures))
    cli.plugin.close()
    return 1 if cli.failures else 0


if __name__ == "__main__":
    sys.exit(main())
