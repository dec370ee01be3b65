"""
Dependency Indexer for GraphQL Fragments

Before an operation can be canonicalized, every fragment it spreads must be known.
Fragments usually live in other files and are passed to graphql(...) as identifiers
imported from those files, e.g.

    import { UserFields } from "./fragments";
    export const GetUser = graphql(`query GetUser { user { ...UserFields } }`, [UserFields]);

BuildContext.index_file() follows those imports through the host and registers
every definition it finds, so a later merge can inline the fragment texts.

State lives on an explicit BuildContext (one per build generation) rather than in
module globals:
- registry: fragment/operation name -> OperationRecord
- indexed_files: files whose definitions are already registered
- definitions_by_file: which names each file registered (for dev-mode invalidation)
- imports_by_file, source_digests: what each indexed file imported and which text
  it was indexed from
"""

import hashlib
import os
import threading
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

import reporter
from extractor import OperationRecord, extract_queries, parse_imports

DEFAULT_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".mjs")


class UnresolvedFragmentError(RuntimeError):
    """A referenced fragment has no import, or the imported file does not define it."""

    def __init__(self, name: str, file_id: Optional[str], detail: str = ""):
        self.name = name
        self.file_id = file_id
        message = f"Fragment {name} referenced in {file_id or '<unknown>'} cannot be found"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DuplicateDefinitionError(ValueError):
    """Two different files define a graphql(...) call with the same name."""

    def __init__(self, name: str, first_file: Optional[str], second_file: Optional[str]):
        self.name = name
        self.first_file = first_file
        self.second_file = second_file
        super().__init__(
            f"{name} is defined in both {first_file} and {second_file}; "
            "persisted query names must be unique across the build"
        )


def read_source_file(file_id: str) -> str:
    """Read a source file straight from disk (dev mode, always the latest contents)."""
    with open(file_id, "r", encoding="utf-8") as f:
        return f.read()


class ModuleHost:
    """
    The two operations the pipeline needs from the surrounding bundler.
    Subclass and override both to plug the pipeline into another host.
    """

    def resolve(self, specifier: str, importer: str) -> Optional[str]:
        raise NotImplementedError

    def load(self, file_id: str) -> str:
        raise NotImplementedError


class FileSystemHost(ModuleHost):
    """
    Resolve import specifiers against the file system the way a TypeScript bundler would:
    - "./file" and "../file" relative to the importing file
    - aliases such as {"@/": "src/"} relative to root
    - extension probing (./file -> ./file.ts) and directory index files (./dir -> ./dir/index.ts)
    - "./file.js" written for ESM output resolving to ./file.ts on disk
    Bare package specifiers resolve to None.
    """

    def __init__(
        self,
        root: str = ".",
        aliases: Optional[Dict[str, str]] = None,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    ):
        self.root = os.path.abspath(root)
        self.aliases = dict(aliases or {})
        self.extensions = tuple(extensions)

    def resolve(self, specifier: str, importer: str) -> Optional[str]:
        if specifier.startswith(("./", "../")) or specifier in (".", ".."):
            base = os.path.join(os.path.dirname(os.path.abspath(importer)), specifier)
        elif specifier.startswith("/"):
            base = specifier
        else:
            base = None
            for prefix, target in self.aliases.items():
                if specifier.startswith(prefix):
                    base = os.path.join(self.root, target, specifier[len(prefix) :])
                    break
            if base is None:
                return None
        return self._first_existing(os.path.normpath(base))

    def _first_existing(self, base: str) -> Optional[str]:
        candidates: List[str] = [base]
        stem, ext = os.path.splitext(base)
        if ext in (".js", ".jsx", ".mjs"):
            candidates.extend([stem + ".ts", stem + ".tsx"])
        candidates.extend(base + extension for extension in self.extensions)
        candidates.extend(
            os.path.join(base, "index" + extension) for extension in self.extensions
        )
        for candidate in candidates:
            if os.path.isfile(candidate):
                return candidate
        return None

    def load(self, file_id: str) -> str:
        return read_source_file(file_id)


class BuildContext:
    """Registry and memo shared by every transform in one build generation."""

    def __init__(self, debug: bool = False):
        self.registry: Dict[str, OperationRecord] = {}
        self.indexed_files: Set[str] = set()
        self.definitions_by_file: Dict[str, Set[str]] = {}
        self.imports_by_file: Dict[str, Dict[str, str]] = {}
        self.source_digests: Dict[str, str] = {}
        self.lock = threading.RLock()
        self.debug = debug

    def register(self, record: OperationRecord) -> None:
        existing = self.registry.get(record.name)
        if existing is not None:
            raise DuplicateDefinitionError(record.name, existing.file_id, record.file_id)
        self.registry[record.name] = record
        if record.file_id is not None:
            self.definitions_by_file.setdefault(record.file_id, set()).add(record.name)

    def invalidate(self, file_id: str) -> None:
        """Forget one edited file so its definitions are re-extracted on the next transform."""
        with self.lock:
            self.indexed_files.discard(file_id)
            self.imports_by_file.pop(file_id, None)
            self.source_digests.pop(file_id, None)
            for name in self.definitions_by_file.pop(file_id, set()):
                self.registry.pop(name, None)

    def reset(self) -> None:
        """Start a new build generation."""
        with self.lock:
            self.registry.clear()
            self.indexed_files.clear()
            self.definitions_by_file.clear()
            self.imports_by_file.clear()
            self.source_digests.clear()

    # ----------------------------
    # Index a file and everything its graphql(...) calls depend on
    #
    # When this returns, every record defined in file_id and every fragment
    # those records reach is in the registry.
    #
    # 1. A file already indexed from different text is invalidated first, so
    #    its records never mix old and new fragment texts.
    # 2. New files are indexed with an explicit worklist instead of recursion,
    #    so deep fragment chains cannot exhaust the interpreter stack.
    # 3. The dependency closure of the file's records is then walked through
    #    the registry. A name that is missing (its file was invalidated, or was
    #    never indexed) is looked up in the import map of the file that
    #    references it and indexed on the spot.
    # ----------------------------
    def index_file(
        self,
        source: str,
        file_id: str,
        host: ModuleHost,
        load: Optional[Callable[[str], str]] = None,
    ) -> None:
        load = load or host.load
        with self.lock:
            if file_id in self.indexed_files and self.source_digests.get(file_id) != _digest(source):
                self.invalidate(file_id)
            self._drain([(file_id, source)], host, load)
            self._ensure_closure(file_id, host, load)

    def _drain(
        self,
        pending: List[Tuple[str, Optional[str]]],
        host: ModuleHost,
        load: Callable[[str], str],
    ) -> None:
        while pending:
            current_id, current_source = pending.pop()
            if current_id in self.indexed_files:
                continue
            self.indexed_files.add(current_id)
            try:
                if current_source is None:
                    current_source = load(current_id)
                pending.extend(self._index_one(current_source, current_id, host))
            except Exception:
                self.indexed_files.discard(current_id)
                raise

    def _ensure_closure(self, file_id: str, host: ModuleHost, load: Callable[[str], str]) -> None:
        stack = sorted(self.definitions_by_file.get(file_id, ()))
        visited: Set[str] = set()
        while stack:
            name = stack.pop()
            if name in visited:
                continue
            visited.add(name)
            record = self.registry[name]
            for dep in sorted(record.depends_on):
                if dep not in self.registry:
                    self._index_dependency(dep, record.file_id, host, load)
                stack.append(dep)

    def _index_dependency(
        self,
        name: str,
        importer: Optional[str],
        host: ModuleHost,
        load: Callable[[str], str],
    ) -> None:
        specifier = self.imports_by_file.get(importer or "", {}).get(name)
        if specifier is None:
            raise UnresolvedFragmentError(name, importer, "it is not imported in this file")
        resolved = host.resolve(specifier, importer)
        if resolved is None:
            raise UnresolvedFragmentError(name, importer, f"cannot resolve {specifier} from {importer}")
        self._drain([(resolved, None)], host, load)
        if name not in self.registry:
            raise UnresolvedFragmentError(name, importer, f"{resolved} does not define it")

    def _index_one(self, source: str, file_id: str, host: ModuleHost) -> List[Tuple[str, None]]:
        if self.debug:
            reporter.PersistedQueryReporter.log_file_indexing(file_id)

        imports = parse_imports(source)
        records = list(extract_queries(source, file_id=file_id))
        local_names = {record.name for record in records}

        queued: List[Tuple[str, None]] = []
        for record in records:
            for dep in sorted(record.depends_on):
                if dep in self.registry or dep in local_names:
                    continue
                specifier = imports.get(dep)
                if specifier is None:
                    raise UnresolvedFragmentError(dep, file_id, "it is not imported in this file")
                resolved = host.resolve(specifier, file_id)
                if resolved is None:
                    raise UnresolvedFragmentError(
                        dep, file_id, f"cannot resolve {specifier} from {file_id}"
                    )
                if resolved not in self.indexed_files:
                    queued.append((resolved, None))

        seen: Set[str] = set()
        for record in records:
            existing = self.registry.get(record.name)
            if existing is not None or record.name in seen:
                raise DuplicateDefinitionError(
                    record.name, existing.file_id if existing else file_id, file_id
                )
            seen.add(record.name)
        for record in records:
            self.register(record)
        self.imports_by_file[file_id] = imports
        self.source_digests[file_id] = _digest(source)
        return queued


def _digest(source: str) -> str:
    return hashlib.sha256(source.encode("utf-8")).hexdigest()
