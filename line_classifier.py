import re
from dataclasses import dataclass

# Glyphs people actually type (or paste) in front of resume bullets.
BULLET_MARKERS = (
    "•", "◦", "○", "▪", "▫", "‣", "⁃", "■", "□", "➢", "➤", "✓", "✔",
    "-", "–", "*", ">", "→", "·",
)

NUMBERED_RE = re.compile(r"^\d+[.)]\s")
LETTERED_RE = re.compile(r"^[a-zA-Z][.)]\s")

ACTION_VERBS = (
    "developed", "managed", "implemented", "led", "optimized", "designed",
    "built", "created", "improved", "increased", "reduced", "delivered",
    "launched", "established", "coordinated", "achieved", "streamlined",
    "automated", "spearheaded", "collaborated", "analyzed", "architected",
    "migrated", "mentored", "drove", "negotiated", "generated", "resolved",
    "deployed", "engineered", "maintained", "supported", "executed",
    "oversaw", "directed", "facilitated", "enhanced", "integrated",
    "refactored", "configured", "tested", "trained", "owned", "scaled",
)

SECTION_HEADERS = (
    "summary", "professional summary", "executive summary", "profile",
    "objective", "experience", "work experience", "professional experience",
    "employment history", "work history", "skills", "technical skills",
    "core competencies", "education", "certifications", "certification",
    "projects", "project experience", "academic projects", "publications",
    "achievements", "awards", "languages", "interests", "references",
    "volunteer", "activities", "contact",
)

YEAR_RE = re.compile(r"\b(19|20)\d{2}\b")
TITLE_CASE_RE = re.compile(r"^[A-Z][a-z]+ [A-Z][a-z]+")
EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.]+")
PHONE_RE = re.compile(r"(\+\d{1,3}[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}")
CONTACT_MARKERS = ("@", "linkedin", "github", "http://", "https://", "www.")


@dataclass(frozen=True)
class LineClassification:
    bullet_point: bool
    structural: bool


def is_bullet_point(line: str) -> bool:
    text = line.strip()
    if not text:
        return False
    if text.startswith(BULLET_MARKERS):
        return True
    if NUMBERED_RE.match(text) or LETTERED_RE.match(text):
        return True
    if len(text) > 20:
        lowered = text.lower()
        return any(verb in lowered for verb in ACTION_VERBS)
    return False


def _looks_like_contact(text: str) -> bool:
    lowered = text.lower()
    if any(m in lowered for m in CONTACT_MARKERS):
        return True
    return bool(EMAIL_RE.search(text) or PHONE_RE.search(text))


def is_structural(line: str) -> bool:
    """
    Headers, dates, titles, company names and contact details: lines the
    model should leave exactly as they are.
    """
    text = line.strip()
    if len(text) < 4:
        return True

    lowered = text.lower()
    if len(text) < 50 and any(h in lowered for h in SECTION_HEADERS):
        return True

    if len(text) < 60:
        if YEAR_RE.search(text):
            return True
        if len(text.split()) <= 4:
            return True
        if TITLE_CASE_RE.match(text):
            return True

    return _looks_like_contact(text)


def classify(line: str) -> LineClassification:
    """Advisory tags for the rewrite prompt. Both flags may be set at once."""
    return LineClassification(bullet_point=is_bullet_point(line), structural=is_structural(line))
