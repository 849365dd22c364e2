import json
import zipfile
from io import BytesIO
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import pytest
from docx import Document

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"

JOB_DESCRIPTION = (
    "Senior Backend Engineer. We need someone who designs and operates Python "
    "microservices on AWS, owns CI/CD pipelines, mentors engineers, and works "
    "closely with product to ship features quickly and reliably."
)

Paragraph = Union[str, Sequence[Tuple[str, bool]]]


def build_docx(paragraphs: Sequence[Paragraph]) -> bytes:
    """
    Build a real .docx with python-docx. A paragraph is either plain text or a
    list of (text, bold) runs.
    """
    doc = Document()
    for item in paragraphs:
        if isinstance(item, str):
            doc.add_paragraph(item)
            continue
        para = doc.add_paragraph()
        for text, bold in item:
            run = para.add_run(text)
            run.bold = bold
    buf = BytesIO()
    doc.save(buf)
    return buf.getvalue()


def make_markup(body_xml: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
        f'<w:document xmlns:w="{W_NS}"><w:body>{body_xml}</w:body></w:document>'
    )


def para_xml(*runs: str, numbered: bool = False) -> str:
    ppr = '<w:pPr><w:numPr><w:ilvl w:val="0"/><w:numId w:val="1"/></w:numPr></w:pPr>' if numbered else ""
    body = "".join(f'<w:r><w:t xml:space="preserve">{t}</w:t></w:r>' for t in runs)
    return f"<w:p>{ppr}{body}</w:p>"


def make_package(markup: str, extra: Optional[Dict[str, bytes]] = None) -> bytes:
    """Minimal zip package with the body entry in the middle of other entries."""
    buf = BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("[Content_Types].xml", b"<Types/>", compress_type=zipfile.ZIP_DEFLATED)
        zf.writestr("word/document.xml", markup.encode("utf-8"), compress_type=zipfile.ZIP_DEFLATED)
        for name, payload in (extra or {}).items():
            zf.writestr(name, payload, compress_type=zipfile.ZIP_STORED)
    return buf.getvalue()


def replacements_json(records: List[dict], prose: bool = False) -> str:
    text = json.dumps({"replacements": records})
    if prose:
        return f"Sure! Here is the tailored resume:\n```json\n{text}\n```\nLet me know if you need more."
    return text


class FakeCollaborator:
    """Stands in for the LLM: records every call and answers from a script."""

    def __init__(self, answer: Union[str, Callable[[List[Dict[str, str]]], str]] = '{"replacements": []}'):
        self.answer = answer
        self.calls: List[List[Dict[str, str]]] = []

    def __call__(self, messages: List[Dict[str, str]]) -> str:
        self.calls.append(messages)
        if callable(self.answer):
            return self.answer(messages)
        return self.answer


class RaisingCollaborator:
    def __init__(self, exc: Exception):
        self.exc = exc
        self.calls = 0

    def __call__(self, messages):
        self.calls += 1
        raise self.exc


RESUME_PARAGRAPHS: List[Paragraph] = [
    "Jane Doe",
    "jane.doe@example.com | (555) 123-4567",
    "",
    "EXPERIENCE",
    [("Acme Corp", True), (" - ", False), ("Software Engineer, 2019 - 2023", False)],
    "• Managed a team of 5 engineers building internal billing tools",
    [("• Developed ", False), ("REST APIs", True), (" in Python for order processing", False)],
    "EDUCATION",
    "Bachelor of Science, 2019",
]

RESUME_LINES = [
    "Jane Doe",
    "jane.doe@example.com | (555) 123-4567",
    "EXPERIENCE",
    "Acme Corp - Software Engineer, 2019 - 2023",
    "• Managed a team of 5 engineers building internal billing tools",
    "• Developed REST APIs in Python for order processing",
    "EDUCATION",
    "Bachelor of Science, 2019",
]


@pytest.fixture
def resume_docx() -> bytes:
    return build_docx(RESUME_PARAGRAPHS)


@pytest.fixture
def job_description() -> str:
    return JOB_DESCRIPTION
