"""
Extractor for GraphQL Call Sites and Import Statements

This module scans TypeScript/JavaScript source text to extract:
- Every `Name = graphql(`...`)` call site, including the optional fragment
  dependency list passed as the second argument: graphql(`...`, [FragA, FragB])
- Every import statement, collapsed into a "local identifier -> module specifier" map

It never touches the module graph. Resolving a specifier to a file is the host's job.

Edge Cases Handled:
- **Call sites:**
    - Newlines and spaces between `graphql(`, the template literal, the fragment list and `)`
    - Trailing commas after the template literal or the fragment list
    - `export const Name = graphql(...)` (the span starts at the identifier)
    - Call shapes inside comments, quoted strings, regex literals or other template
      literals are ignored
    - A backtick inside a regex literal (/`/) does not open a template literal
    - Template literals containing a backtick (nested interpolation) are NOT supported

- **Imports:**
    - Default imports: import Name from "./file"
    - Named and aliased imports: import { A, B as C } from "./file"
    - Mixed imports: import Name, { A } from "./file"
    - Namespace imports: import * as NS from "./file"
    - Type-only imports: import type { A } from "./file", import { type A } from "./file"

REGEX PATTERNS EXPLANATION:
1. QUERY_PATTERN:
   - (?P<name>[A-Za-z0-9_$]+): The assigned identifier
   - \\s*=\\s*graphql\\(: Assignment to a graphql( call
   - [\\n ]*`(?P<source>[^`]+)`: The template literal, captured verbatim (no backticks inside)
   - (?:,[\\n ]*\\[(?P<frags>[^\\]]*)\\])?: Optional fragment dependency array
   - [\\n, ]*\\): Optional trailing commas/whitespace and the closing parenthesis

2. IMPORT_PATTERN:
   - import\\s+(?:type\\s+)?: The import keyword and an optional type modifier
   - (?P<names>...): A default name, a braced list, a namespace import, or a default + braced list
   - \\s*from\\s*['"](?P<source>[^'"]+)['"]: The module specifier
"""

import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple

QUERY_PATTERN = re.compile(
    r"(?P<name>[A-Za-z0-9_$]+)[ \t]*=[ \t]*graphql\([\s]*`(?P<source>[^`]+)`"
    r"[\s]*(?:,[\s]*\[(?P<frags>[^\]]*)\])?[\s,]*\)"
)

IMPORT_PATTERN = re.compile(
    r"import\s+(?:type\s+)?"
    r"(?P<names>\*\s*as\s+[A-Za-z0-9_$]+"
    r"|[A-Za-z0-9_$]+\s*,\s*\{[^}]*\}"
    r"|[A-Za-z0-9_$]+\s*,\s*\*\s*as\s+[A-Za-z0-9_$]+"
    r"|[A-Za-z0-9_$]+"
    r"|\{[^}]*\})"
    r"\s*from\s*['\"](?P<source>[^'\"]+)['\"]"
)

# a / after one of these starts a regex literal rather than a division
REGEX_PRECEDING_CHARS = set("=(,:[!&|?{};+-*%<>~^")
REGEX_PRECEDING_KEYWORDS = (
    "return",
    "typeof",
    "case",
    "do",
    "else",
    "in",
    "of",
    "void",
    "yield",
    "await",
)


@dataclass(frozen=True)
class OperationRecord:
    """A single `Name = graphql(...)` call site found in a source file."""

    name: str
    source_text: str
    span: Tuple[int, int]
    depends_on: FrozenSet[str] = field(default_factory=frozenset)
    file_id: Optional[str] = None


def offset_to_line(code: str, offset: int) -> int:
    """Convert a character offset into a 1-based line number."""
    return code[:offset].count("\n") + 1


# ----------------------------
# Helper: Compute the character ranges that are not code
#
# This function walks the source once and records the ranges covered by:
# - Line comments: // ...
# - Block comments: /* ... */
# - Single and double quoted strings (with backslash escapes)
# - Template literals: `...` (skipped as a unit, escapes honoured)
# - Regex literals: a `/` where an expression starts (after `=`, `(`, `,`, `return`, ...)
#
# A call shape or import statement whose first character falls inside one of
# these ranges is not real code and must not be extracted.
#
# Returns a sorted list of (start, end) ranges, end exclusive.
# ----------------------------
def find_ignored_ranges(code: str) -> List[Tuple[int, int]]:
    ranges: List[Tuple[int, int]] = []
    length = len(code)
    i = 0
    while i < length:
        char = code[i]
        if char == "/" and i + 1 < length and code[i + 1] == "/":
            end = code.find("\n", i)
            end = length if end == -1 else end
            ranges.append((i, end))
            i = end
        elif char == "/" and i + 1 < length and code[i + 1] == "*":
            end = code.find("*/", i + 2)
            end = length if end == -1 else end + 2
            ranges.append((i, end))
            i = end
        elif char in ("'", '"', "`"):
            end = _find_closing_quote(code, i + 1, char)
            ranges.append((i, end))
            i = end
        elif char == "/" and _regex_allowed(code, i):
            end = _find_regex_end(code, i + 1)
            ranges.append((i, end))
            i = end
        else:
            i += 1
    return ranges


def _find_closing_quote(code: str, start: int, quote: str) -> int:
    i = start
    while i < len(code):
        char = code[i]
        if char == "\\":
            i += 2
            continue
        if char == quote:
            return i + 1
        # an unterminated plain string stops at the end of its line
        if char == "\n" and quote != "`":
            return i
        i += 1
    return len(code)


def _regex_allowed(code: str, slash: int) -> bool:
    # a slash after an operand is division; after an operator or keyword it opens a regex
    j = slash - 1
    while j >= 0 and code[j] in " \t\r\n":
        j -= 1
    if j < 0:
        return True
    if code[j] in REGEX_PRECEDING_CHARS:
        return True
    end = j + 1
    while j >= 0 and (code[j].isalnum() or code[j] in "_$"):
        j -= 1
    return code[j + 1 : end] in REGEX_PRECEDING_KEYWORDS


def _find_regex_end(code: str, start: int) -> int:
    i = start
    in_class = False
    while i < len(code):
        char = code[i]
        if char == "\\":
            i += 2
            continue
        if char == "\n":
            return i
        if char == "[":
            in_class = True
        elif char == "]":
            in_class = False
        elif char == "/" and not in_class:
            return i + 1
        i += 1
    return len(code)


def _in_ranges(offset: int, ranges: List[Tuple[int, int]]) -> bool:
    for start, end in ranges:
        if start > offset:
            return False
        if start <= offset < end:
            return True
    return False


def _split_identifiers(raw: Optional[str]) -> FrozenSet[str]:
    if not raw:
        return frozenset()
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


# ----------------------------
# Extracts graphql(...) call sites from a source file
#
# Yields one OperationRecord per call site, lazily, in source order.
# The span covers `Name = graphql(...)` exactly, so the rewriter can replace it
# without touching the surrounding declaration (export const, semicolons, ...).
# ----------------------------
def extract_queries(code: str, file_id: Optional[str] = None) -> Iterator[OperationRecord]:
    """
    Yield every `Name = graphql(`...`[, [deps]])` call site in code.
    Matches starting inside a comment, a string or another template literal are skipped.
    """
    if "graphql" not in code:
        return
    ignored = find_ignored_ranges(code)
    for match in QUERY_PATTERN.finditer(code):
        if _in_ranges(match.start(), ignored):
            continue
        yield OperationRecord(
            name=match.group("name"),
            source_text=match.group("source"),
            span=(match.start(), match.end()),
            depends_on=_split_identifiers(match.group("frags")),
            file_id=file_id,
        )


def parse_imports(code: str) -> Dict[str, str]:
    """
    Map every locally bound import name to the module specifier it comes from.
    Aliased imports are keyed by the alias, since that is the name used in code.
    """
    imports: Dict[str, str] = {}
    ignored = find_ignored_ranges(code)
    for match in IMPORT_PATTERN.finditer(code):
        if _in_ranges(match.start(), ignored):
            continue
        source = match.group("source")
        for local_name in _local_names(match.group("names")):
            imports[local_name] = source
    return imports


def _local_names(names: str) -> List[str]:
    local_names: List[str] = []
    default_part, _, braced_part = names.partition("{")
    if braced_part:
        braced_part = braced_part.rstrip().rstrip("}")
    for part in default_part.split(","):
        part = part.strip()
        if not part:
            continue
        if part.startswith("*"):
            # import * as NS
            local_names.append(part.split("as", 1)[1].strip())
        else:
            local_names.append(part)
    for part in braced_part.split(","):
        part = part.strip()
        if not part:
            continue
        if part.startswith("type "):
            part = part[len("type ") :].strip()
        exported, _, alias = part.partition(" as ")
        local_names.append((alias or exported).strip())
    return local_names
