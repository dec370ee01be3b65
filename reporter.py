#!/usr/bin/env python3
"""
Reporter module for formatting and displaying persisted query results.

This module handles all the printing and formatting logic for the pipeline,
keeping the extractor, indexer and plugin focused on their own work.
"""

import json
import os
import sys
from typing import Any, Dict, List


def print_results(results: List[Dict[str, Any]]) -> None:
    """
    Print persisted query results in a human-readable format.

    Args:
        results: List of per-file results from the CLI run
    """
    for entry in results:
        print(f"\n=== File: {entry['file']} ===")
        for i, query in enumerate(entry.get("queries", []), 1):
            print(f"  {i}. Name: {query.get('name')} line {query.get('line')}")
            print(f"     Hash: {query.get('hash')}")
            text = query.get("query") or ""
            # Show the start of long queries only
            if len(text) > 120:
                print(f"     Query: {text[:120]}...")
            else:
                print(f"     Query: {text}")
        print()


def output_json(results: List[Dict[str, Any]]) -> None:
    """
    Output results as JSON for piping to other tools.

    Args:
        results: List of per-file results from the CLI run
    """
    print(json.dumps(results, indent=2))


def should_print_human_readable() -> bool:
    """
    Determine if output should be human-readable or JSON.

    Returns:
        True if output should be human-readable, False for JSON
    """
    return os.isatty(1)


def report_results(results: List[Dict[str, Any]], force_print: bool = False) -> None:
    """
    Report results in the appropriate format.

    Args:
        results: List of per-file results from the CLI run
        force_print: If True, force human-readable output even when piped
    """
    if force_print or should_print_human_readable():
        print_results(results)
    else:
        output_json(results)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {message}", file=sys.stderr)


def print_warning(message: str) -> None:
    """Print a warning message to stderr."""
    print(f"Warning: {message}", file=sys.stderr)


def report_file_error(file_path: str, message: str) -> None:
    """Report a per-file failure in file: level: message format."""
    print(f"{file_path}: error: {message}", file=sys.stderr)


class PersistedQueryReporter:
    """Handles all progress output for the persisted query pipeline."""

    @staticmethod
    def log_file_indexing(file_path: str) -> None:
        """Log a file being scanned for graphql(...) definitions."""
        print(f"Indexing GraphQL definitions in: {file_path}")

    @staticmethod
    def log_query_persisted(name: str, query_hash: str) -> None:
        """Log one persisted query."""
        print(f"Persisted {name} as {query_hash}")

    @staticmethod
    def log_manifest_written(path: str, entry_count: int) -> None:
        """Log a manifest flush."""
        print(f"Wrote {entry_count} persisted queries to {path}")

    @staticmethod
    def log_introspection_published(schema_source: str, introspection_hash: str) -> None:
        """Log introspection artifacts being written."""
        print(f"Published introspection for {schema_source} ({introspection_hash[:12]})")

    @staticmethod
    def log_introspection_unchanged(schema_source: str) -> None:
        """Log an unchanged schema."""
        print(f"Introspection for {schema_source} unchanged, skipping writes")

    # CLI-specific methods
    @staticmethod
    def print_banner() -> None:
        """Print the CLI banner."""
        print("=" * 60)
        print("🔐 GraphQL Persisted Query Builder")
        print("=" * 60)
        print()

    @staticmethod
    def print_scan_start(target_path: str) -> None:
        """Print scan start message."""
        print(f"\n🔍 Persisting GraphQL operations from: {target_path}")

    @staticmethod
    def print_processing_file(file_path: str) -> None:
        """Print file processing message."""
        print(f"   Processing: {file_path}")

    @staticmethod
    def print_rewritten_file(file_path: str) -> None:
        """Print rewritten file message."""
        print(f"   Rewrote: {file_path}")

    @staticmethod
    def print_dry_run_header() -> None:
        """Print dry run header."""
        print("\n🔍 DRY RUN - No files will be rewritten")
        print("=" * 40)

    @staticmethod
    def print_summary(
        file_count: int, query_count: int, new_entries: int, manifest_path: str
    ) -> None:
        """Print the run summary."""
        print("\n📊 Persisted Query Summary:")
        print(f"   📁 Files with queries: {file_count}")
        print(f"   🔗 Persisted queries: {query_count}")
        print(f"   ➕ New manifest entries: {new_entries}")
        print(f"   📄 Manifest: {manifest_path}")

    @staticmethod
    def print_failures(failure_count: int) -> None:
        """Print failure count."""
        if failure_count > 0:
            print(f"\n⚠️  Files failed: {failure_count}")
        else:
            print("\n✅ All files processed!")

    @staticmethod
    def print_no_files_found() -> None:
        """Print no files found message."""
        print("No files with graphql(...) calls found.")

    @staticmethod
    def print_disabled() -> None:
        """Print the disabled message."""
        print("Persisted queries are disabled (GQL_PERSISTED_ENABLED=false); nothing to do.")
