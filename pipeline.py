import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from config import Settings, settings as default_settings
from docx_package import read_body_markup, replace_body_markup, tailored_filename
from errors import InvalidInput
from line_classifier import classify
from llm_client import Collaborator
from markup_engine import BodyMarkup, extract_lines, guard_structure, patch_lines
from reconciler import reconcile, reconcile_single
from rewrite_prompt import PromptLine, build_reroll_messages, build_rewrite_messages

logger = logging.getLogger(__name__)


class TailorMode(str, Enum):
    ONE_SHOT = "one_shot"   # no human review: suggest and patch in one go
    PREVIEW = "preview"     # return suggestions only
    FINALIZE = "finalize"   # apply caller-confirmed choices

    @classmethod
    def from_form(cls, raw: Optional[str]) -> "TailorMode":
        value = (raw or "").strip().lower()
        if not value or value in ("one_shot", "oneshot", "tailor"):
            return cls.ONE_SHOT
        if value == "preview":
            return cls.PREVIEW
        if value == "finalize":
            return cls.FINALIZE
        raise InvalidInput("Invalid mode. Must be one of: preview, finalize, or empty for one-click tailoring.")


@dataclass
class TailorRequest:
    filename: str
    data: bytes
    job_description: str = ""
    mode: TailorMode = TailorMode.ONE_SHOT
    accepted: Dict[int, str] = field(default_factory=dict)


@dataclass
class SuggestedLine:
    index: int
    original_text: str
    suggested_text: str
    bullet_point: bool
    structural: bool
    matched_by: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.suggested_text.strip() != self.original_text.strip()


@dataclass
class TailorResult:
    mode: TailorMode
    filename: str
    lines: List[SuggestedLine] = field(default_factory=list)
    document: Optional[bytes] = None
    lines_changed: int = 0
    structure_reverted: bool = False

    @property
    def changed_count(self) -> int:
        return sum(1 for ln in self.lines if ln.changed)


# ===================== INPUT VALIDATION =====================

def validate_upload(filename: Optional[str], data: Optional[bytes], cfg: Settings) -> None:
    if not data:
        raise InvalidInput("No file uploaded")
    if not (filename or "").lower().endswith(".docx"):
        raise InvalidInput("Please upload a .docx file")
    if len(data) > cfg.max_upload_bytes:
        limit_mb = cfg.max_upload_bytes / (1024 * 1024)
        raise InvalidInput(f"File is too large. Maximum size is {limit_mb:g} MB.")


def validate_job_description(job_description: Optional[str], cfg: Settings) -> str:
    jd = (job_description or "").strip()
    if not jd:
        raise InvalidInput("Job description is empty.")
    if len(jd) < cfg.min_job_description_chars:
        raise InvalidInput(
            f"Job description is too short. Please paste at least {cfg.min_job_description_chars} characters."
        )
    if len(jd) > cfg.max_job_description_chars:
        raise InvalidInput(
            f"Job description is too long. Maximum is {cfg.max_job_description_chars} characters."
        )
    return jd


def parse_accepted_replacements(raw: Optional[str]) -> Dict[int, str]:
    """
    Parse the finalize form field: a JSON object {"<line index>": "<text>"}.
    Only the lines the user changed need to be listed.
    """
    if raw is None or not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidInput("Invalid JSON in 'acceptedReplacements' field.") from e
    if not isinstance(data, dict):
        raise InvalidInput("'acceptedReplacements' must be a JSON object keyed by line index.")

    accepted: Dict[int, str] = {}
    for key, value in data.items():
        k = key.strip()
        if not (k.isascii() and k.isdigit()):
            raise InvalidInput(f"Invalid line index in 'acceptedReplacements': {key!r}")
        if not isinstance(value, str):
            raise InvalidInput(f"Replacement for line {k} must be a string.")
        accepted[int(k)] = value
    return accepted


def parse_avoid_field(raw: Optional[str]) -> List[str]:
    if raw is None or not raw.strip():
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidInput("Invalid JSON in 'avoid' field.") from e
    if not isinstance(data, list):
        raise InvalidInput("'avoid' must be a JSON array of strings.")
    return [s for s in data if isinstance(s, str)]


# ===================== PIPELINE =====================

class TailorPipeline:
    """
    extract -> classify -> build request -> collaborator -> reconcile ->
    patch -> validate -> repackage

    One instance can serve many requests; every request gets its own
    BodyMarkup and replacement map. The mode decides where the replacement
    map comes from (collaborator or caller) and whether the document is
    patched at all.
    """

    def __init__(self, collaborator: Collaborator, cfg: Optional[Settings] = None):
        self.collaborator = collaborator
        self.settings = cfg or default_settings

    def run(self, request: TailorRequest) -> TailorResult:
        validate_upload(request.filename, request.data, self.settings)
        jd = ""
        if request.mode is not TailorMode.FINALIZE:
            jd = validate_job_description(request.job_description, self.settings)

        body = extract_lines(read_body_markup(request.data))

        if request.mode is TailorMode.FINALIZE:
            suggestions = self._accepted_lines(body, request.accepted)
        else:
            suggestions = self._suggest(body, jd)

        result = TailorResult(
            mode=request.mode,
            filename=tailored_filename(request.filename),
            lines=suggestions,
        )
        if request.mode is TailorMode.PREVIEW:
            logger.info("Preview ready: %d of %d lines changed", result.changed_count, len(suggestions))
            return result

        replacements = {s.index: s.suggested_text for s in suggestions}
        self._apply(request.data, body, replacements, result)
        return result

    # ---- convenience entry points ----

    def preview(self, filename: str, data: bytes, job_description: str) -> TailorResult:
        return self.run(TailorRequest(filename, data, job_description, TailorMode.PREVIEW))

    def finalize(self, filename: str, data: bytes, accepted: Dict[int, str]) -> TailorResult:
        return self.run(TailorRequest(filename, data, mode=TailorMode.FINALIZE, accepted=accepted))

    def one_shot(self, filename: str, data: bytes, job_description: str) -> TailorResult:
        return self.run(TailorRequest(filename, data, job_description, TailorMode.ONE_SHOT))

    def reroll(
        self,
        filename: str,
        data: bytes,
        job_description: str,
        index: int,
        avoid: Optional[Sequence[str]] = None,
    ) -> SuggestedLine:
        """
        Ask for an alternative for one line. Reads the upload only; nothing
        about the other lines is touched or returned.
        """
        validate_upload(filename, data, self.settings)
        jd = validate_job_description(job_description, self.settings)

        body = extract_lines(read_body_markup(data))
        if not 0 <= index < len(body.lines):
            raise InvalidInput(
                f"Line index {index} is out of range; the document has {len(body.lines)} lines."
            )

        prompt_lines = self._prompt_lines(body)
        messages = build_reroll_messages(
            prompt_lines,
            index,
            jd,
            avoid=avoid,
            length_ratio=self.settings.prompt_length_ratio,
        )
        response = self.collaborator(messages)
        text, matched_by = reconcile_single(body.texts, index, response)

        target = prompt_lines[index]
        return SuggestedLine(
            index=index,
            original_text=target.text,
            suggested_text=text,
            bullet_point=target.bullet_point,
            structural=target.structural,
            matched_by=matched_by,
        )

    # ---- stages ----

    def _prompt_lines(self, body: BodyMarkup) -> List[PromptLine]:
        out: List[PromptLine] = []
        for line in body.lines:
            tags = classify(line.text)
            out.append(
                PromptLine(
                    index=line.index,
                    text=line.text,
                    # Word bullets are usually list numbering, not a glyph in the text
                    bullet_point=tags.bullet_point or line.fragment.list_paragraph,
                    structural=tags.structural,
                )
            )
        return out

    def _suggest(self, body: BodyMarkup, jd: str) -> List[SuggestedLine]:
        prompt_lines = self._prompt_lines(body)
        messages = build_rewrite_messages(prompt_lines, jd, self.settings.prompt_length_ratio)
        response = self.collaborator(messages)
        rec = reconcile(body.texts, response)

        return [
            SuggestedLine(
                index=pl.index,
                original_text=pl.text,
                suggested_text=rec.replacements[pl.index],
                bullet_point=pl.bullet_point,
                structural=pl.structural,
                matched_by=rec.matched_by.get(pl.index),
            )
            for pl in prompt_lines
        ]

    def _accepted_lines(self, body: BodyMarkup, accepted: Dict[int, str]) -> List[SuggestedLine]:
        n = len(body.lines)
        for idx in accepted:
            if not 0 <= idx < n:
                raise InvalidInput(
                    f"acceptedReplacements refers to line {idx}, but the document has {n} lines."
                )

        out: List[SuggestedLine] = []
        for pl in self._prompt_lines(body):
            chosen = " ".join(accepted.get(pl.index, "").split())
            out.append(
                SuggestedLine(
                    index=pl.index,
                    original_text=pl.text,
                    # A blank choice keeps the original; lines are never deleted
                    suggested_text=chosen or pl.text,
                    bullet_point=pl.bullet_point,
                    structural=pl.structural,
                    matched_by="caller" if chosen else None,
                )
            )
        return out

    def _apply(
        self,
        data: bytes,
        body: BodyMarkup,
        replacements: Dict[int, str],
        result: TailorResult,
    ) -> None:
        patched, changed = patch_lines(body, replacements)
        final_markup, reverted = guard_structure(body.source, patched, body.prefix)

        result.document = replace_body_markup(data, final_markup)
        result.structure_reverted = reverted
        result.lines_changed = 0 if reverted else changed
        logger.info(
            "%s done: %d lines changed%s",
            result.mode.value,
            result.lines_changed,
            " (reverted to original after structural check)" if reverted else "",
        )
