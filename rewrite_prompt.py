import json
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

REPLACEMENTS_FIELD = "replacements"

SYSTEM_PROMPT = (
    "You are a senior technical resume writer and ATS optimization expert. "
    "You ALWAYS return valid JSON when asked for JSON, with no surrounding markdown."
)


@dataclass(frozen=True)
class PromptLine:
    index: int
    text: str
    bullet_point: bool
    structural: bool

    def to_payload(self) -> Dict[str, object]:
        return {
            "lineIndex": self.index,
            "text": self.text,
            "bulletPoint": self.bullet_point,
            "structural": self.structural,
        }


def _variation_hint() -> str:
    # Give the model some notion of variation for multiple runs on same JD + resume
    return f"run_{int(time.time() * 1000)}"


def _output_contract(length_ratio: float, exactly_one: bool = False) -> str:
    count_rule = (
        "3) Return EXACTLY ONE record, for the target line only.\n"
        if exactly_one
        else "3) Return exactly ONE record per input line, in the same order, covering EVERY lineIndex.\n"
    )
    return (
        "JSON OUTPUT FORMAT (VERY IMPORTANT):\n"
        f"1) Output a single JSON object with ONE key: '{REPLACEMENTS_FIELD}'.\n"
        f"2) '{REPLACEMENTS_FIELD}' is an array of objects with these fields:\n"
        "      'lineIndex'    (integer, copied from the input)\n"
        "      'originalLine' (string, the input text copied verbatim)\n"
        "      'tailoredLine' (string, the rewritten text; equal to originalLine if unchanged)\n"
        "      'shouldTailor' (boolean, false when the line must stay unchanged)\n"
        f"{count_rule}"
        "4) LENGTH RULE: 'tailoredLine' must stay close to the length of 'originalLine' and must\n"
        f"   NEVER be longer than {length_ratio:g}x the original line. The document layout is fixed.\n"
        "5) Plain text only inside 'tailoredLine': no markdown, no **bold**, no line breaks.\n"
        "6) Do NOT wrap the JSON in markdown. No backticks. No extra commentary.\n"
    )


def build_rewrite_messages(
    lines: Sequence[PromptLine],
    job_description: str,
    length_ratio: float = 1.2,
) -> List[Dict[str, str]]:
    """
    Build the chat messages asking the model for one replacement record per
    logical line of the resume.
    """
    payload = [ln.to_payload() for ln in lines]

    user_content = (
        "You are tailoring an existing resume to a Job Description (JD).\n\n"
        "The resume is given as a JSON array of lines in document order. Each line has:\n"
        "- lineIndex: its position (never change it)\n"
        "- text: the current text\n"
        "- bulletPoint: true if it looks like an achievement/responsibility bullet\n"
        "- structural: true if it looks like a header, date, job title, company, or contact detail\n\n"
        "YOUR GOAL:\n"
        "- Rewrite bullet and content lines so they speak directly to the JD's responsibilities,\n"
        "  tools, and domain language.\n"
        "- Keep every fact true: companies, dates, titles, degrees, numbers, and years of experience\n"
        "  stay exactly as they are.\n\n"
        "HARD CONSTRAINTS:\n"
        "1) Lines with structural=true MUST be returned unchanged with shouldTailor=false.\n"
        "2) Focus your edits on lines with bulletPoint=true and on longer descriptive lines.\n"
        "3) Do NOT merge, split, add, or drop lines. One input line -> one output record.\n"
        "4) Keep any leading bullet glyph or list marker (e.g. '•', '-', '1.') exactly as it was.\n\n"
        "WRITING STYLE:\n"
        "1) Concise, professional, human language. No buzzword stuffing.\n"
        "2) Start bullets with a concrete action verb.\n"
        "3) Do NOT invent metrics, tools, or employers that are not in the original line.\n\n"
        f"{_output_contract(length_ratio)}\n"
        "Now here is the Job Description (JD):\n\n"
        f"{job_description}\n\n"
        "And here are the resume lines:\n"
        f"{json.dumps(payload, indent=2, ensure_ascii=False)}\n\n"
        f"Variation hint for this run: {_variation_hint()}\n"
        f"Return ONLY the JSON object with the '{REPLACEMENTS_FIELD}' array.\n"
    )

    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_content},
    ]


def build_reroll_messages(
    lines: Sequence[PromptLine],
    index: int,
    job_description: str,
    avoid: Optional[Sequence[str]] = None,
    length_ratio: float = 1.2,
    context_window: int = 2,
) -> List[Dict[str, str]]:
    """
    Ask for an alternative rewrite of a single line.

    Neighbouring lines are sent as read-only context so the model knows which
    role/section the line belongs to.
    """
    target = lines[index]
    lo = max(0, index - context_window)
    hi = min(len(lines), index + context_window + 1)
    context = [ln.to_payload() for ln in lines[lo:hi] if ln.index != index]

    avoid_block = ""
    cleaned_avoid = [a.strip() for a in (avoid or []) if isinstance(a, str) and a.strip()]
    if cleaned_avoid:
        avoid_block = "The user already rejected these versions. Write something noticeably different:\n"
        for a in cleaned_avoid:
            avoid_block += f"- {a}\n"
        avoid_block += "\n"

    user_content = (
        "You are tailoring ONE line of an existing resume to a Job Description (JD).\n\n"
        "TARGET LINE:\n"
        f"{json.dumps(target.to_payload(), ensure_ascii=False)}\n\n"
        "SURROUNDING LINES (context only, do NOT rewrite them):\n"
        f"{json.dumps(context, indent=2, ensure_ascii=False)}\n\n"
        "RULES:\n"
        "1) Keep every fact true: companies, dates, titles, numbers stay as they are.\n"
        "2) Keep any leading bullet glyph or list marker exactly as it was.\n"
        "3) Align the wording with the JD's responsibilities and tools.\n\n"
        f"{avoid_block}"
        f"{_output_contract(length_ratio, exactly_one=True)}\n"
        "Job Description (JD):\n\n"
        f"{job_description}\n\n"
        f"Variation hint for this run: {_variation_hint()}\n"
    )

    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_content},
    ]
