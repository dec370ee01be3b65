"""
Source Rewriter

Replaces each `Name = graphql(`...`)` call site with a persisted reference:

    Name = graphql.persisted(`<hash>`, graphql(`<canonical text>`))   # default
    Name = graphql.persisted(`<hash>`)                                  # remove_source

Edits are made strictly by span through TextSplicer, which keeps every character
outside the replaced spans byte-identical and can emit a version 3 source map
from the edited text back to the original.
"""

import bisect
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from extractor import OperationRecord

BASE64_DIGITS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"


def encode_vlq(value: int) -> str:
    """Base64 VLQ encoding used by source map "mappings"."""
    vlq = ((-value) << 1) | 1 if value < 0 else value << 1
    encoded = ""
    while True:
        digit = vlq & 31
        vlq >>= 5
        if vlq:
            digit |= 32
        encoded += BASE64_DIGITS[digit]
        if not vlq:
            return encoded


class TextSplicer:
    """
    Overwrite non-overlapping spans of a string and track where every piece of
    the result came from.
    """

    def __init__(self, original: str):
        self.original = original
        self._edits: List[Tuple[int, int, str]] = []
        self._line_starts = [0] + [i + 1 for i, char in enumerate(original) if char == "\n"]

    def overwrite(self, start: int, end: int, content: str) -> "TextSplicer":
        if not 0 <= start < end <= len(self.original):
            raise ValueError(f"Span ({start}, {end}) is outside the source text")
        for other_start, other_end, _ in self._edits:
            if start < other_end and other_start < end:
                raise ValueError(
                    f"Span ({start}, {end}) overlaps an earlier edit ({other_start}, {other_end})"
                )
        bisect.insort(self._edits, (start, end, content))
        return self

    @property
    def modified(self) -> bool:
        return bool(self._edits)

    def _chunks(self) -> List[Tuple[int, int, Optional[str]]]:
        # (original start, original end, replacement or None for untouched text)
        chunks: List[Tuple[int, int, Optional[str]]] = []
        position = 0
        for start, end, content in self._edits:
            if position < start:
                chunks.append((position, start, None))
            chunks.append((start, end, content))
            position = end
        if position < len(self.original):
            chunks.append((position, len(self.original), None))
        return chunks

    def to_string(self) -> str:
        return "".join(
            self.original[start:end] if content is None else content
            for start, end, content in self._chunks()
        )

    def _original_position(self, offset: int) -> Tuple[int, int]:
        line = bisect.bisect_right(self._line_starts, offset) - 1
        return line, offset - self._line_starts[line]

    def generate_map(
        self,
        source: Optional[str] = None,
        file: Optional[str] = None,
        include_content: bool = True,
    ) -> Dict[str, Any]:
        """Build a source map (v3) for to_string() pointing back at the original."""
        lines: List[List[Tuple[int, int, int]]] = [[]]
        column = 0

        def advance(text: str) -> None:
            nonlocal column
            for _ in range(text.count("\n")):
                lines.append([])
            if "\n" in text:
                column = len(text) - text.rfind("\n") - 1
            else:
                column += len(text)

        for start, end, content in self._chunks():
            if content is not None:
                lines[-1].append((column, *self._original_position(start)))
                advance(content)
                continue
            offset = start
            for piece in self.original[start:end].splitlines(keepends=True):
                if piece.strip("\r\n"):
                    lines[-1].append((column, *self._original_position(offset)))
                advance(piece)
                offset += len(piece)

        encoded_lines: List[str] = []
        previous_line = previous_column = 0
        for segments in lines:
            encoded: List[str] = []
            previous_generated = 0
            for generated_column, original_line, original_column in segments:
                encoded.append(
                    encode_vlq(generated_column - previous_generated)
                    + encode_vlq(0)
                    + encode_vlq(original_line - previous_line)
                    + encode_vlq(original_column - previous_column)
                )
                previous_generated = generated_column
                previous_line, previous_column = original_line, original_column
            encoded_lines.append(",".join(encoded))

        source_map: Dict[str, Any] = {
            "version": 3,
            "sources": [source or ""],
            "names": [],
            "mappings": ";".join(encoded_lines),
        }
        if file:
            source_map["file"] = file
        if include_content:
            source_map["sourcesContent"] = [self.original]
        return source_map


@dataclass
class RewriteResult:
    code: str
    map: Dict[str, Any]


def escape_template_literal(text: str) -> str:
    """Escape text so the evaluated template literal equals text exactly."""
    return text.replace("\\", "\\\\").replace("`", "\\`").replace("${", "\\${")


def persisted_call(
    name: str,
    query_hash: str,
    canonical_text: Optional[str] = None,
    pure: bool = False,
) -> str:
    """Render the replacement for one call site."""
    annotation = "/* @__PURE__ */ " if pure else ""
    if canonical_text is None:
        return f"{name} = {annotation}graphql.persisted(`{query_hash}`)"
    return (
        f"{name} = {annotation}graphql.persisted(`{query_hash}`, "
        f"graphql(`{escape_template_literal(canonical_text)}`))"
    )


def rewrite_source(
    code: str,
    replacements: Sequence[Tuple[OperationRecord, str, str]],
    remove_source: bool = False,
    pure: bool = False,
    source_name: Optional[str] = None,
) -> RewriteResult:
    """
    Replace every (record, hash, canonical text) call site in code.
    Exactly one replacement is made per record span.
    """
    splicer = TextSplicer(code)
    for record, query_hash, canonical_text in replacements:
        start, end = record.span
        splicer.overwrite(
            start,
            end,
            persisted_call(
                record.name,
                query_hash,
                None if remove_source else canonical_text,
                pure=pure,
            ),
        )
    return RewriteResult(code=splicer.to_string(), map=splicer.generate_map(source=source_name))
