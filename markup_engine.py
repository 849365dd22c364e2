import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from docx.oxml.ns import qn
from lxml import etree

from errors import MalformedPackage, NoContentFound, StructuralCorruption

logger = logging.getLogger(__name__)

W_DOCUMENT = qn("w:document")
W_P = qn("w:p")
W_PPR = qn("w:pPr")
W_NUMPR = qn("w:numPr")
W_T = qn("w:t")


# ===================== TREE MODEL =====================

@dataclass
class TextRun:
    """A <w:t> leaf and the text it held when the body was extracted."""

    element: etree._Element
    original: str


@dataclass
class ParagraphFragment:
    """A <w:p> container and the text runs it owns (nested paragraphs own their own)."""

    element: etree._Element
    runs: List[TextRun]
    list_paragraph: bool = False


@dataclass
class LogicalLine:
    index: int
    text: str
    fragment: ParagraphFragment


@dataclass
class BodyMarkup:
    """
    Result of the single extraction pass over word/document.xml.

    `lines` keeps a back-reference from every logical line to the fragment it
    came from, so patching never has to re-walk (or re-parse) the markup.
    The tree is mutated by patch_lines(), so a BodyMarkup is patched once.
    """

    source: str
    root: etree._Element
    lines: List[LogicalLine]

    @property
    def texts(self) -> List[str]:
        return [ln.text for ln in self.lines]

    @property
    def prefix(self) -> str:
        return self.root.prefix or "w"


# ===================== EXTRACTION =====================

def _make_parser() -> etree.XMLParser:
    # Parsers are cheap; one per call keeps them out of shared thread state.
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        huge_tree=True,
        remove_blank_text=False,
    )


def parse_body(markup: str) -> etree._Element:
    try:
        root = etree.fromstring(markup.encode("utf-8"), _make_parser())
    except etree.XMLSyntaxError as e:
        raise MalformedPackage(f"Document body is not well-formed XML: {e}") from e

    if root.tag != W_DOCUMENT:
        raise MalformedPackage("Document body does not start with a w:document element")
    return root


def _owning_paragraph(node: etree._Element) -> Optional[etree._Element]:
    parent = node.getparent()
    while parent is not None and parent.tag != W_P:
        parent = parent.getparent()
    return parent


def _is_list_paragraph(p: etree._Element) -> bool:
    ppr = p.find(W_PPR)
    return ppr is not None and ppr.find(W_NUMPR) is not None


def iter_fragments(root: etree._Element) -> Iterator[ParagraphFragment]:
    """Yield every <w:p> in document order with the <w:t> runs it owns."""
    for p in root.iter(W_P):
        runs = [
            TextRun(element=t, original=t.text or "")
            for t in p.iter(W_T)
            if _owning_paragraph(t) is p
        ]
        yield ParagraphFragment(element=p, runs=runs, list_paragraph=_is_list_paragraph(p))


def fragment_text(fragment: ParagraphFragment) -> str:
    parts = [r.original.strip() for r in fragment.runs]
    return " ".join(p for p in parts if p).strip()


def extract_lines(markup: str) -> BodyMarkup:
    """
    Flatten the body markup into ordered logical lines.

    Paragraphs without any text are skipped and get no index.
    Raises NoContentFound when nothing is left.
    """
    root = parse_body(markup)

    lines: List[LogicalLine] = []
    for fragment in iter_fragments(root):
        text = fragment_text(fragment)
        if not text:
            continue
        lines.append(LogicalLine(index=len(lines), text=text, fragment=fragment))

    if not lines:
        raise NoContentFound("No text content found in document")

    logger.info("Extracted %d logical lines from document body", len(lines))
    return BodyMarkup(source=markup, root=root, lines=lines)


# ===================== PATCHING =====================

def sanitize_xml_text(value: str) -> str:
    """
    Remove characters that are invalid in XML 1.0 (control characters,
    surrogates, U+FFFE/U+FFFF). lxml refuses to store them.
    """
    out_chars = []
    for ch in value:
        code = ord(ch)
        if code < 0x20 and ch not in ("\t", "\n", "\r"):
            continue
        if 0xD800 <= code <= 0xDFFF or code in (0xFFFE, 0xFFFF):
            continue
        out_chars.append(ch)
    return "".join(out_chars)


def _rewrite_fragment(fragment: ParagraphFragment, new_text: str) -> None:
    # First run with visible text takes the whole line; every other run that
    # had any text is emptied. Run properties and wrappers stay as they are.
    target = next(r for r in fragment.runs if r.original.strip())
    for run in fragment.runs:
        if run is target:
            run.element.text = new_text
        elif run.original:
            run.element.text = ""


def serialize_body(root: etree._Element) -> str:
    tree = root.getroottree()
    data = etree.tostring(
        tree,
        xml_declaration=True,
        encoding="UTF-8",
        standalone=tree.docinfo.standalone,
    )
    return data.decode("utf-8")


def patch_lines(body: BodyMarkup, replacements: Dict[int, str]) -> Tuple[str, int]:
    """
    Write the replacement map back into the markup.

    Returns (markup, number of lines changed). All fragments are rewritten in
    the tree first and the tree is serialized once at the end; text escaping
    (&, <, >) is done by the serializer. Quotes and apostrophes are written
    unescaped in element text, which is equivalent XML. Lines whose replacement equals the
    original (or is blank) are not touched; if nothing changes the original
    markup string is returned as-is.
    """
    changed = 0
    for line in body.lines:
        new_text = sanitize_xml_text(replacements.get(line.index, line.text)).strip()
        if not new_text or new_text == line.text:
            continue
        _rewrite_fragment(line.fragment, new_text)
        changed += 1

    if not changed:
        return body.source, 0

    logger.info("Patched %d of %d lines", changed, len(body.lines))
    return serialize_body(body.root), changed


# ===================== STRUCTURAL VALIDATION =====================

def _structure_patterns(prefix: str) -> Tuple[re.Pattern, re.Pattern, re.Pattern, re.Pattern]:
    px = re.escape(prefix)
    doc_open = re.compile(rf"<{px}:document[\s>]")
    doc_close = re.compile(rf"</{px}:document\s*>")
    # <w:p> / <w:p attr="..."> but not <w:p/>, <w:pPr>, <w:proofErr> ...
    p_open = re.compile(rf"<{px}:p(?=[\s>/])[^>]*?(?<!/)>")
    p_close = re.compile(rf"</{px}:p\s*>")
    return doc_open, doc_close, p_open, p_close


def validate_structure(markup: str, prefix: str = "w") -> None:
    """
    Coarse post-patch check: the w:document root is opened and closed, and
    paragraph opening/closing tag counts match. This is not a well-formedness
    check; mis-nested runs or broken attributes inside a paragraph pass.
    """
    doc_open, doc_close, p_open, p_close = _structure_patterns(prefix)

    if not doc_open.search(markup) or not doc_close.search(markup):
        raise StructuralCorruption("Root document element is missing its opening or closing tag")

    opened = len(p_open.findall(markup))
    closed = len(p_close.findall(markup))
    if opened != closed:
        raise StructuralCorruption(
            f"Unbalanced paragraph tags: {opened} opening vs {closed} closing"
        )


def guard_structure(original: str, patched: str, prefix: str = "w") -> Tuple[str, bool]:
    """
    Return (markup, reverted). A patch that fails validation is discarded and
    the original markup is returned instead.
    """
    if patched == original:
        return original, False
    try:
        validate_structure(patched, prefix)
    except StructuralCorruption as e:
        logger.warning("Patched markup failed structural validation, reverting: %s", e)
        return original, True
    return patched, False
