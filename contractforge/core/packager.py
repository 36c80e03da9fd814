"""Document Packager: merged HTML markup to a DOCX artifact.

The default backend renders with python-docx.  Output is reproducible:
document properties are pinned to the generation instant and every zip
entry gets a fixed timestamp, so the same markup generated at the same
instant always hashes the same.

A backend that is missing or cannot start raises
``PackagingUnavailableError``; that is an environment problem, not a data
problem, and the operator is told to reload rather than fix the provider.
"""

from __future__ import annotations

import asyncio
import io
import logging
import re
import zipfile
from datetime import datetime
from html.parser import HTMLParser
from typing import Any, Protocol, runtime_checkable

from contractforge.core.keys import contract_file_name, generation_date, parse_iso_timestamp
from contractforge.errors import ContractForgeError, DataError, PackagingUnavailableError
from contractforge.models.contracts import PackagedDocument

logger = logging.getLogger(__name__)

DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
_BODY_FONT = "Aptos"
_BODY_SIZE_PT = 11
_HEADING_SIZES_PT = {1: 16}
_DEFAULT_HEADING_PT = 13

_BLOCK_TAGS = {"p", "div", "section", "article", "header", "footer", "blockquote"}
_INLINE_IGNORED = {"span", "font", "a", "small", "sup", "sub", "html", "body", "head", "title", "meta", "link", "tbody", "thead", "tfoot", "colgroup", "col"}
_SKIPPED_CONTENT = {"style", "script"}
_WHITESPACE = re.compile(r"\s+")


@runtime_checkable
class PackagingBackend(Protocol):
    """Renders markup into document bytes, returning ``(data, warnings)``."""

    def render(self, markup: str, *, title: str, created: datetime) -> tuple[bytes, list[str]]:
        ...


# ---------------------------------------------------------------------------
# HTML to python-docx
# ---------------------------------------------------------------------------


class HtmlToDocxParser(HTMLParser):
    """Streams HTML into a python-docx ``Document``.

    Headings, paragraphs, line breaks, lists, bold/italic/underline runs and
    simple tables are supported.  Other tags are dropped, keeping their text,
    and reported once each.
    """

    def __init__(self, doc: Any, pt: Any) -> None:
        super().__init__(convert_charrefs=True)
        self.doc = doc
        self._pt = pt
        self.current_paragraph: Any = None
        self.list_stack: list[str] = []
        self.bold_depth = 0
        self.italic_depth = 0
        self.underline_depth = 0
        self.heading_level: int | None = None
        self.skip_depth = 0
        self.table_depth = 0
        self.table_rows: list[list[tuple[str, bool]]] = []
        self.cell_text: list[str] | None = None
        self.cell_is_header = False
        self.unsupported: dict[str, None] = {}
        # true at a line start or right after emitted whitespace
        self._suppress_space = True

    # -- paragraphs ---------------------------------------------------------

    def _new_paragraph(self, style: str | None = None) -> Any:
        paragraph = self.doc.add_paragraph(style=style) if style else self.doc.add_paragraph()
        self.current_paragraph = paragraph
        self._suppress_space = True
        return paragraph

    def _add_run(self, text: str) -> None:
        if self.current_paragraph is None:
            self._new_paragraph()
        run = self.current_paragraph.add_run(text)
        run.font.name = _BODY_FONT
        run.font.size = self._pt(_BODY_SIZE_PT)
        if self.bold_depth:
            run.bold = True
        if self.italic_depth:
            run.italic = True
        if self.underline_depth:
            run.underline = True
        if self.heading_level:
            run.bold = True
            run.font.size = self._pt(_HEADING_SIZES_PT.get(self.heading_level, _DEFAULT_HEADING_PT))
        self._suppress_space = text.endswith(" ")

    # -- tables -------------------------------------------------------------

    def _close_cell(self) -> None:
        if self.cell_text is None:
            return
        if not self.table_rows:
            self.table_rows.append([])
        self.table_rows[-1].append((" ".join("".join(self.cell_text).split()), self.cell_is_header))
        self.cell_text = None

    def _flush_table(self) -> None:
        rows = [row for row in self.table_rows if row]
        self.table_rows = []
        if not rows:
            return
        width = max(len(row) for row in rows)
        table = self.doc.add_table(rows=len(rows), cols=width)
        table.style = "Table Grid"
        for r, row in enumerate(rows):
            for c, (text, is_header) in enumerate(row):
                cell = table.cell(r, c)
                run = cell.paragraphs[0].add_run(text)
                run.font.name = _BODY_FONT
                run.font.size = self._pt(_BODY_SIZE_PT)
                if is_header:
                    run.bold = True
        self.current_paragraph = None

    # -- HTMLParser hooks ---------------------------------------------------

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        tag = tag.lower()
        if tag in _SKIPPED_CONTENT:
            self.skip_depth += 1
            return

        if tag == "table":
            self.table_depth += 1
            if self.table_depth == 1:
                self.table_rows = []
            return
        if self.table_depth:
            if self.table_depth > 1:
                return
            if tag == "tr":
                self._close_cell()
                self.table_rows.append([])
            elif tag in ("td", "th"):
                self._close_cell()
                self.cell_text = []
                self.cell_is_header = tag == "th"
            elif tag == "br" and self.cell_text is not None:
                self.cell_text.append(" ")
            return

        if tag in ("h1", "h2", "h3", "h4", "h5", "h6"):
            self.heading_level = int(tag[1])
            self._new_paragraph()
        elif tag in _BLOCK_TAGS:
            self._new_paragraph()
        elif tag == "br":
            if self.current_paragraph is not None:
                self.current_paragraph.add_run().add_break()
                self._suppress_space = True
        elif tag in ("ul", "ol"):
            self.list_stack.append(tag)
        elif tag == "li":
            style = "List Number" if self.list_stack and self.list_stack[-1] == "ol" else "List Bullet"
            self._new_paragraph(style)
        elif tag in ("strong", "b"):
            self.bold_depth += 1
        elif tag in ("em", "i"):
            self.italic_depth += 1
        elif tag == "u":
            self.underline_depth += 1
        elif tag == "hr":
            self._new_paragraph()
            self.current_paragraph = None
        elif tag not in _INLINE_IGNORED:
            self.unsupported.setdefault(tag, None)

    def handle_endtag(self, tag: str) -> None:
        tag = tag.lower()
        if tag in _SKIPPED_CONTENT:
            self.skip_depth = max(0, self.skip_depth - 1)
            return

        if tag == "table":
            if self.table_depth == 1:
                self._close_cell()
            self.table_depth = max(0, self.table_depth - 1)
            if self.table_depth == 0:
                self._flush_table()
            return
        if self.table_depth:
            if self.table_depth == 1 and tag in ("td", "th", "tr"):
                self._close_cell()
            return

        if tag in ("h1", "h2", "h3", "h4", "h5", "h6"):
            self.heading_level = None
            self.current_paragraph = None
        elif tag in _BLOCK_TAGS or tag == "li":
            self.current_paragraph = None
        elif tag in ("ul", "ol"):
            if self.list_stack:
                self.list_stack.pop()
        elif tag in ("strong", "b"):
            self.bold_depth = max(0, self.bold_depth - 1)
        elif tag in ("em", "i"):
            self.italic_depth = max(0, self.italic_depth - 1)
        elif tag == "u":
            self.underline_depth = max(0, self.underline_depth - 1)

    def handle_data(self, data: str) -> None:
        if self.skip_depth:
            return
        if self.table_depth:
            if self.cell_text is not None:
                self.cell_text.append(data)
            return
        text = _WHITESPACE.sub(" ", data)
        if self.current_paragraph is None or self._suppress_space:
            text = text.lstrip()
        if text:
            self._add_run(text)

    def close(self) -> None:
        super().close()
        self._close_cell()
        if self.table_rows:
            self._flush_table()


def _normalize_zip(data: bytes) -> bytes:
    """Rewrite a zip with fixed entry timestamps and permissions."""
    out = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(data)) as source, zipfile.ZipFile(
        out, "w", zipfile.ZIP_DEFLATED
    ) as target:
        for info in source.infolist():
            fixed = zipfile.ZipInfo(info.filename, date_time=_ZIP_EPOCH)
            fixed.compress_type = zipfile.ZIP_DEFLATED
            fixed.external_attr = 0o600 << 16
            target.writestr(fixed, source.read(info.filename))
    return out.getvalue()


class DocxBackend:
    """python-docx rendering backend."""

    def __init__(self) -> None:
        try:
            import docx
            from docx.shared import Pt
        except ImportError as exc:
            raise PackagingUnavailableError(
                "DOCX generator not available (python-docx is not installed). "
                "Reload the service after installing it; the contract data is fine."
            ) from exc
        self._docx = docx
        self._pt = Pt

    def render(self, markup: str, *, title: str, created: datetime) -> tuple[bytes, list[str]]:
        doc = self._docx.Document()
        props = doc.core_properties
        props.title = title
        props.author = "contractforge"
        props.last_modified_by = "contractforge"
        props.revision = 1
        props.created = created
        props.modified = created

        parser = HtmlToDocxParser(doc, self._pt)
        parser.feed(markup)
        parser.close()

        buffer = io.BytesIO()
        doc.save(buffer)
        warnings = [f"Unsupported markup <{tag}> was flattened to text" for tag in parser.unsupported]
        return _normalize_zip(buffer.getvalue()), warnings


# ---------------------------------------------------------------------------
# Packager
# ---------------------------------------------------------------------------


class DocumentPackager:
    """Turns merged markup into a named binary artifact.

    Parameters
    ----------
    backend:
        Rendering backend.  Defaults to :class:`DocxBackend`, created on first
        use so a missing dependency surfaces as ``PackagingUnavailableError``
        at packaging time.
    """

    content_type = DOCX_CONTENT_TYPE

    def __init__(self, backend: PackagingBackend | None = None) -> None:
        self._backend = backend

    def _get_backend(self) -> PackagingBackend:
        if self._backend is None:
            self._backend = DocxBackend()
        return self._backend

    async def package(
        self,
        markup: str,
        *,
        contract_year: str,
        provider_name: str,
        generated_at: str,
    ) -> PackagedDocument:
        """Render ``markup`` and name it ``{year}_{slug}_{YYYYMMDD}.docx``."""
        file_name = contract_file_name(contract_year, provider_name, generation_date(generated_at))
        created = parse_iso_timestamp(generated_at).replace(microsecond=0)
        backend = self._get_backend()

        try:
            data, warnings = await asyncio.to_thread(
                backend.render, markup, title=file_name, created=created
            )
        except ContractForgeError:
            raise
        except Exception as exc:
            logger.warning("Packaging %s failed: %s", file_name, exc)
            raise DataError(f"Failed to package document {file_name}: {exc}") from exc

        if not data:
            raise PackagingUnavailableError(
                f"Packaging backend returned an empty document for {file_name}."
            )
        return PackagedDocument(
            file_name=file_name,
            data=data,
            content_type=self.content_type,
            warnings=warnings,
        )
