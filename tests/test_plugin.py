"""Tests for plugin: the end-to-end transform pipeline."""

import hashlib
import json
import threading
import time

import pytest

import manifest
from config import IntrospectionConfig, PersistedQueriesOptions
from indexer import FileSystemHost, UnresolvedFragmentError
from plugin import PersistedQueriesPlugin


def sha256(text):
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def read_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def manifest_path(tmp_path):
    return str(tmp_path / "persisted-queries.json")


def make_plugin(tmp_path, manifest_path, **overrides):
    options = PersistedQueriesOptions(output_path=manifest_path, **overrides)
    return PersistedQueriesPlugin(options, host=FileSystemHost(root=str(tmp_path)))


def test_transform_persists_and_rewrites(tmp_path, manifest_path):
    plugin = make_plugin(tmp_path, manifest_path)
    code = "export const Q = graphql(`query { user { name } }`);\n"
    canonical = "query { user { name } }"
    query_hash = sha256(canonical)

    result = plugin.transform(code, str(tmp_path / "app.ts"))
    plugin.build_end()

    assert result.code == (
        f"export const Q = graphql.persisted(`{query_hash}`, graphql(`{canonical}`));\n"
    )
    assert result.queries[0]["hash"] == query_hash
    assert result.queries[0]["line"] == 1
    assert read_json(manifest_path) == {query_hash: canonical}


def test_transform_with_add_typename_and_remove_source(tmp_path, manifest_path):
    plugin = make_plugin(tmp_path, manifest_path, add_typename=True, remove_source=True)
    code = "export const Q = graphql(`query { user { name } }`);\n"
    canonical = "query { user { __typename name } }"

    result = plugin.transform(code, str(tmp_path / "app.ts"))
    plugin.build_end()

    assert result.code == f"export const Q = graphql.persisted(`{sha256(canonical)}`);\n"
    assert read_json(manifest_path) == {sha256(canonical): canonical}


def test_transform_resolves_imported_fragments(tmp_path, manifest_path):
    (tmp_path / "fragments.ts").write_text(
        "export const UserFields = graphql(`fragment UserFields on User { name id }`);\n",
        encoding="utf-8",
    )
    code = (
        'import { UserFields } from "./fragments";\n'
        "export const GetUser = graphql(`query GetUser { user { ...UserFields } }`, [UserFields]);\n"
    )
    plugin = make_plugin(tmp_path, manifest_path)

    result = plugin.transform(code, str(tmp_path / "query.ts"))

    expected = "query GetUser { user { ...UserFields } } fragment UserFields on User { id name }"
    assert result.queries[0]["query"] == expected
    assert result.queries[0]["line"] == 2
    assert result.code.startswith('import { UserFields } from "./fragments";\n')


def test_formatting_differences_share_one_manifest_entry(tmp_path, manifest_path):
    plugin = make_plugin(tmp_path, manifest_path)
    first = plugin.transform(
        "export const A = graphql(`query Same { b a }`);\n", str(tmp_path / "a.ts")
    )
    second = plugin.transform(
        "export const B = graphql(`query Same {\n  a\n  b\n}`);\n", str(tmp_path / "b.ts")
    )
    plugin.build_end()

    assert first.queries[0]["hash"] == second.queries[0]["hash"]
    assert len(read_json(manifest_path)) == 1


def test_unresolved_fragment_fails_the_transform(tmp_path, manifest_path):
    plugin = make_plugin(tmp_path, manifest_path)
    code = "export const Q = graphql(`query Q { t { ...Gone } }`, [Gone]);\n"

    with pytest.raises(UnresolvedFragmentError):
        plugin.transform(code, str(tmp_path / "q.ts"))


def test_files_without_queries_are_left_alone(tmp_path, manifest_path):
    plugin = make_plugin(tmp_path, manifest_path)

    assert plugin.transform("const a = 1;\n", str(tmp_path / "a.ts")) is None
    assert plugin.transform("const a = graphql;\n", str(tmp_path / "a.ts")) is None
    assert plugin.transform("A = graphql(`query A { a }`)", str(tmp_path / "a.css")) is None
    assert (
        plugin.transform("A = graphql(`query A { a }`)", "/app/node_modules/lib/a.ts") is None
    )


def test_disabled_plugin_is_a_no_op(tmp_path, manifest_path):
    plugin = make_plugin(tmp_path, manifest_path, enabled=False)

    result = plugin.transform("export const Q = graphql(`query { a }`);\n", str(tmp_path / "a.ts"))
    plugin.build_start()
    plugin.build_end()
    plugin.close()

    assert result is None
    assert plugin.manifest is None
    assert not (tmp_path / "persisted-queries.json").exists()


def test_dev_server_reindexes_changed_files(tmp_path, manifest_path):
    fragments = tmp_path / "fragments.ts"
    fragments.write_text(
        "export const F = graphql(`fragment F on User { id }`);\n", encoding="utf-8"
    )
    code = 'import { F } from "./fragments";\nexport const Q = graphql(`query Q { user { ...F } }`, [F]);\n'
    plugin = make_plugin(tmp_path, manifest_path, dev_server=True, debounce=60)

    before = plugin.transform(code, str(tmp_path / "q.ts"))
    assert plugin.manifest.flush_pending

    fragments.write_text(
        "export const F = graphql(`fragment F on User { id name }`);\n", encoding="utf-8"
    )
    plugin.file_changed(str(fragments))
    plugin.file_changed(str(tmp_path / "q.ts"))
    after = plugin.transform(code, str(tmp_path / "q.ts"))
    plugin.close()

    assert before.queries[0]["hash"] != after.queries[0]["hash"]
    assert after.queries[0]["query"].endswith("fragment F on User { id name }")
    # old entries are never removed
    assert len(read_json(manifest_path)) == 2


def test_dev_server_fragment_edit_alone_refreshes_importers(tmp_path, manifest_path):
    fragments = tmp_path / "fragments.ts"
    fragments.write_text(
        "export const F = graphql(`fragment F on User { id }`);\n", encoding="utf-8"
    )
    code = 'import { F } from "./fragments";\nexport const Q = graphql(`query Q { user { ...F } }`, [F]);\n'
    plugin = make_plugin(tmp_path, manifest_path, dev_server=True, debounce=60)
    plugin.transform(code, str(tmp_path / "q.ts"))

    fragments.write_text(
        "export const F = graphql(`fragment F on User { id name }`);\n", encoding="utf-8"
    )
    plugin.file_changed(str(fragments))
    after = plugin.transform(code, str(tmp_path / "q.ts"))
    plugin.close()

    assert after.queries[0]["query"] == "query Q { user { ...F } } fragment F on User { id name }"
    assert "F" in plugin.context.registry


def test_retransforming_edited_text_uses_the_new_same_file_fragments(tmp_path, manifest_path):
    plugin = make_plugin(tmp_path, manifest_path)
    file_id = str(tmp_path / "a.ts")
    template = (
        "export const F = graphql(`fragment F on U { {fields} }`);\n"
        "export const Q = graphql(`query Q { u { ...F } }`, [F]);\n"
    )

    plugin.transform(template.replace("{fields}", "id"), file_id)
    result = plugin.transform(template.replace("{fields}", "id name"), file_id)

    assert [q["query"] for q in result.queries] == [
        "fragment F on U { id name }",
        "query Q { u { ...F } } fragment F on U { id name }",
    ]


def test_dev_server_burst_of_transforms_writes_the_manifest_once(
    tmp_path, manifest_path, monkeypatch
):
    writes = []
    written = threading.Event()
    original = manifest.write_json_atomic

    def counting_write(path, data):
        original(path, data)
        writes.append(dict(data))
        written.set()

    monkeypatch.setattr(manifest, "write_json_atomic", counting_write)
    plugin = make_plugin(tmp_path, manifest_path, dev_server=True, debounce=0.2)

    for name in ("A", "B", "C"):
        plugin.transform(
            f"export const {name} = graphql(`query {name} {{ a }}`);\n",
            str(tmp_path / f"{name.lower()}.ts"),
        )

    assert written.wait(timeout=5)
    time.sleep(0.4)

    assert len(writes) == 1
    assert len(writes[0]) == 3
    assert len(read_json(manifest_path)) == 3
    plugin.close()


def test_build_start_forgets_the_previous_build(tmp_path, manifest_path):
    plugin = make_plugin(tmp_path, manifest_path)
    code = "export const Q = graphql(`query Q { a }`);\n"
    plugin.transform(code, str(tmp_path / "q.ts"))

    plugin.build_start()

    assert plugin.context.registry == {}
    assert plugin.context.indexed_files == set()
    assert plugin.transform(code, str(tmp_path / "other.ts")).queries[0]["name"] == "Q"


def test_build_start_publishes_introspection(tmp_path, manifest_path):
    schema = tmp_path / "schema.graphql"
    schema.write_text("type Query { a: String }\n", encoding="utf-8")
    introspection_path = tmp_path / "introspection.json"
    plugin = make_plugin(
        tmp_path,
        manifest_path,
        introspection=IntrospectionConfig(
            schema=str(schema), schema_path=str(introspection_path)
        ),
    )

    introspection_hash = plugin.build_start()

    assert introspection_hash == plugin.publisher.last_hash
    assert "__schema" in read_json(introspection_path)
