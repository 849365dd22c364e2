import pytest
from lxml import etree

from docx_package import read_body_markup
from errors import MalformedPackage, NoContentFound, StructuralCorruption
from markup_engine import (
    W_P,
    extract_lines,
    guard_structure,
    patch_lines,
    sanitize_xml_text,
    validate_structure,
)
from tests.conftest import RESUME_LINES, W_NS, make_markup, para_xml


def test_extract_lines_from_python_docx_document(resume_docx):
    body = extract_lines(read_body_markup(resume_docx))
    assert body.texts == RESUME_LINES
    assert [ln.index for ln in body.lines] == list(range(len(RESUME_LINES)))


def test_runs_are_joined_with_single_spaces():
    markup = make_markup(para_xml("  Built ", "", "  data   ", "pipelines"))
    body = extract_lines(markup)
    assert body.texts == ["Built data pipelines"]


def test_empty_paragraphs_get_no_index():
    markup = make_markup(para_xml("First") + "<w:p/>" + para_xml("   ") + para_xml("Second"))
    body = extract_lines(markup)
    assert body.texts == ["First", "Second"]
    assert [ln.index for ln in body.lines] == [0, 1]


def test_nested_paragraph_owns_its_runs():
    markup = make_markup(
        "<w:p><w:r><w:t>Outer</w:t></w:r>"
        "<w:r><w:pict><w:txbxContent><w:p><w:r><w:t>Inner</w:t></w:r></w:p></w:txbxContent></w:pict></w:r>"
        "</w:p>"
    )
    body = extract_lines(markup)
    assert body.texts == ["Outer", "Inner"]


def test_list_paragraph_flag():
    markup = make_markup(para_xml("Plain line") + para_xml("Numbered line", numbered=True))
    body = extract_lines(markup)
    assert [ln.fragment.list_paragraph for ln in body.lines] == [False, True]


def test_no_text_raises_no_content_found():
    with pytest.raises(NoContentFound):
        extract_lines(make_markup("<w:p/>" + para_xml(" ")))


@pytest.mark.parametrize(
    "markup",
    [
        "<w:document><w:body>",
        f'<root xmlns:w="{W_NS}"><w:p><w:r><w:t>x</w:t></w:r></w:p></root>',
    ],
)
def test_bad_markup_raises_malformed_package(markup):
    with pytest.raises(MalformedPackage):
        extract_lines(markup)


def test_patch_rewrites_first_run_and_empties_the_rest():
    markup = make_markup(
        '<w:p><w:pPr><w:jc w:val="center"/></w:pPr>'
        '<w:r><w:rPr><w:b/></w:rPr><w:t>Managed</w:t></w:r>'
        '<w:r><w:t xml:space="preserve"> a team of 5</w:t></w:r></w:p>'
        + para_xml("Untouched line")
    )
    body = extract_lines(markup)
    patched, changed = patch_lines(body, {0: "Led a team of 5 backend engineers"})

    assert changed == 1
    root = etree.fromstring(patched.encode("utf-8"))
    paragraphs = root.findall(f".//{W_P}")
    assert len(paragraphs) == 2
    texts = [t.text or "" for t in paragraphs[0].iter(f"{{{W_NS}}}t")]
    assert texts == ["Led a team of 5 backend engineers", ""]
    # formatting containers are still there
    assert paragraphs[0].find(f".//{{{W_NS}}}b") is not None
    assert paragraphs[0].find(f".//{{{W_NS}}}jc") is not None
    assert extract_lines(patched).texts == ["Led a team of 5 backend engineers", "Untouched line"]


def test_patch_identity_returns_source_unchanged():
    markup = make_markup(para_xml("One") + para_xml("Two"))
    body = extract_lines(markup)
    patched, changed = patch_lines(body, {0: "One", 1: "  "})
    assert changed == 0
    assert patched == markup


def test_patch_escapes_reserved_characters():
    markup = make_markup(para_xml("Ran research team"))
    body = extract_lines(markup)
    patched, _ = patch_lines(body, {0: "Ran R&D <Ops> team"})
    assert "R&amp;D &lt;Ops&gt; team" in patched
    assert extract_lines(patched).texts == ["Ran R&D <Ops> team"]


def test_patch_then_extract_round_trip(resume_docx):
    body = extract_lines(read_body_markup(resume_docx))
    replacements = dict(enumerate(body.texts))
    replacements[4] = "• Led 5 engineers shipping Python billing microservices"
    patched, changed = patch_lines(body, replacements)

    assert changed == 1
    expected = list(RESUME_LINES)
    expected[4] = replacements[4]
    assert extract_lines(patched).texts == expected
    validate_structure(patched)


def test_sanitize_xml_text_drops_control_characters():
    assert sanitize_xml_text("A\x00B\x0bC\tD\n") == "ABC\tD\n"


def test_patch_with_control_characters_keeps_markup_valid():
    body = extract_lines(make_markup(para_xml("Old text here")))
    patched, changed = patch_lines(body, {0: "New\x07 text"})
    assert changed == 1
    assert extract_lines(patched).texts == ["New text"]


def test_validate_structure_accepts_self_closing_paragraphs():
    validate_structure(make_markup(para_xml("x") + "<w:p/>" + '<w:p w:rsidR="00AB"/>'))


@pytest.mark.parametrize(
    "markup",
    [
        make_markup(para_xml("x")).replace("</w:body>", "</w:p></w:body>"),
        make_markup(para_xml("x")).replace("</w:document>", ""),
        make_markup(para_xml("x")).replace("<w:p>", "<w:p><w:p>", 1),
    ],
)
def test_validate_structure_rejects_broken_markup(markup):
    with pytest.raises(StructuralCorruption):
        validate_structure(markup)


def test_validate_structure_ignores_paragraph_properties():
    markup = make_markup('<w:p><w:pPr><w:pStyle w:val="Title"/></w:pPr><w:proofErr w:type="spellStart"/>'
                         "<w:r><w:t>x</w:t></w:r></w:p>")
    validate_structure(markup)


def test_guard_structure_reverts_on_stray_close_tag():
    original = make_markup(para_xml("x"))
    broken = original.replace("</w:body>", "</w:p></w:body>")
    markup, reverted = guard_structure(original, broken)
    assert reverted is True
    assert markup == original


def test_guard_structure_passes_valid_patch():
    original = make_markup(para_xml("x"))
    patched = make_markup(para_xml("y"))
    assert guard_structure(original, patched) == (patched, False)


def test_guard_structure_uses_document_prefix():
    original = (
        '<ns0:document xmlns:ns0="%s"><ns0:body><ns0:p><ns0:r><ns0:t>x</ns0:t></ns0:r></ns0:p>'
        "</ns0:body></ns0:document>" % W_NS
    )
    body = extract_lines(original)
    assert body.prefix == "ns0"
    patched, _ = patch_lines(body, {0: "y"})
    markup, reverted = guard_structure(original, patched, body.prefix)
    assert reverted is False
    assert extract_lines(markup).texts == ["y"]


def test_patch_keeps_quotes_in_element_text():
    body = extract_lines(make_markup(para_xml("Shipped the beta")))
    patched, _ = patch_lines(body, {0: "Shipped \"Atlas\" and O'Neil's tools"})
    assert "Shipped \"Atlas\" and O'Neil's tools" in patched
    assert extract_lines(patched).texts == ["Shipped \"Atlas\" and O'Neil's tools"]
