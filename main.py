import logging
import os
import re
from io import BytesIO
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from config import settings
from docx_package import DOCX_MEDIA_TYPE
from errors import InvalidInput, TailorError
from llm_client import choose_llm_from_list, make_collaborator, parse_llm_providers_field
from pipeline import (
    SuggestedLine,
    TailorMode,
    TailorPipeline,
    TailorRequest,
    TailorResult,
    parse_accepted_replacements,
    parse_avoid_field,
)

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

GENERIC_ERROR = "Failed to process the document"


# ---------- Response models ----------
class PreviewLine(BaseModel):
    index: int
    originalText: str
    suggestedText: str
    bulletPoint: bool
    structural: bool
    changed: bool
    matchedBy: Optional[str] = None


class PreviewResponse(BaseModel):
    fileName: str
    totalLines: int
    changedCount: int
    llmProvider: str
    llmModel: str
    lines: List[PreviewLine]


class RerollResponse(BaseModel):
    index: int
    originalText: str
    suggestedText: str
    bulletPoint: bool
    structural: bool
    changed: bool


class HealthResponse(BaseModel):
    ok: bool
    llmProvider: str
    llmModel: str


app = FastAPI(title="Resume tailor")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Lines-Changed", "X-Structure-Reverted"],
)


# --- dependencies ---
def get_llm_choice(llm_providers: Optional[str] = Form(None)) -> Dict[str, str]:
    """Decide which LLM provider/model to use for this request."""
    return choose_llm_from_list(parse_llm_providers_field(llm_providers))


def get_pipeline(choice: Dict[str, str] = Depends(get_llm_choice)) -> TailorPipeline:
    return TailorPipeline(make_collaborator(choice["provider"], choice["model"]))


# --- helpers ---
def _safe_filename(name: str) -> str:
    """
    Keep the download name header-safe: 'Jane Doé CV_tailored.docx' ->
    'Jane_Do_CV_tailored.docx'.
    """
    base = os.path.basename(name or "")
    base = re.sub(r"[^A-Za-z0-9._-]+", "_", base).strip("._")
    return base or "resume_tailored.docx"


def _error_response(e: TailorError) -> JSONResponse:
    if e.status_code >= 500:
        logger.error("%s: %s", type(e).__name__, e.message)
    else:
        logger.info("Rejected request (%s): %s", type(e).__name__, e.message)
    return JSONResponse(status_code=e.status_code, content={"error": e.message})


async def _read_upload(upload: Optional[UploadFile]) -> bytes:
    if upload is None:
        raise InvalidInput("No file uploaded")
    # One byte past the limit is enough to know the upload is too large.
    return await upload.read(settings.max_upload_bytes + 1)


def _docx_response(result: TailorResult) -> StreamingResponse:
    filename = _safe_filename(result.filename)
    return StreamingResponse(
        BytesIO(result.document or b""),
        media_type=DOCX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Lines-Changed": str(result.lines_changed),
            "X-Structure-Reverted": "true" if result.structure_reverted else "false",
        },
    )


def _preview_line(line: SuggestedLine) -> PreviewLine:
    return PreviewLine(
        index=line.index,
        originalText=line.original_text,
        suggestedText=line.suggested_text,
        bulletPoint=line.bullet_point,
        structural=line.structural,
        changed=line.changed,
        matchedBy=line.matched_by,
    )


# ============================================================
# ======================= ENDPOINTS ==========================
# ============================================================

@app.get("/health", response_model=HealthResponse)
def health():
    choice = choose_llm_from_list([])
    return HealthResponse(ok=True, llmProvider=choice["provider"], llmModel=choice["model"])


@app.post("/api/tailor")
async def tailor(
    resume: Optional[UploadFile] = File(None),
    job_description: Optional[str] = Form(None, alias="jobDescription"),
    mode: Optional[str] = Form(None),
    accepted_replacements: Optional[str] = Form(None, alias="acceptedReplacements"),
    choice: Dict[str, str] = Depends(get_llm_choice),
    pipeline: TailorPipeline = Depends(get_pipeline),
):
    """
    Unified tailoring endpoint used by the frontend.

    - mode = "preview"   -> JSON with every line's original and suggested text
    - mode = "finalize"  -> DOCX with the caller's accepted replacements applied
    - mode = "" / absent -> one-click: suggest and apply, return the DOCX
    """
    try:
        tailor_mode = TailorMode.from_form(mode)
        data = await _read_upload(resume)
        accepted = (
            parse_accepted_replacements(accepted_replacements)
            if tailor_mode is TailorMode.FINALIZE
            else {}
        )
        request = TailorRequest(
            filename=resume.filename or "",
            data=data,
            job_description=job_description or "",
            mode=tailor_mode,
            accepted=accepted,
        )
        result = await run_in_threadpool(pipeline.run, request)
    except TailorError as e:
        return _error_response(e)
    except Exception:
        logger.exception("Error processing docx file")
        return JSONResponse(status_code=500, content={"error": GENERIC_ERROR})

    if result.mode is TailorMode.PREVIEW:
        return PreviewResponse(
            fileName=_safe_filename(result.filename),
            totalLines=len(result.lines),
            changedCount=result.changed_count,
            llmProvider=choice["provider"],
            llmModel=choice["model"],
            lines=[_preview_line(ln) for ln in result.lines],
        )

    return _docx_response(result)


@app.post("/api/tailor/reroll", response_model=RerollResponse)
async def reroll_line(
    resume: Optional[UploadFile] = File(None),
    job_description: Optional[str] = Form(None, alias="jobDescription"),
    line_index: Optional[str] = Form(None, alias="lineIndex"),
    avoid: Optional[str] = Form(None),
    pipeline: TailorPipeline = Depends(get_pipeline),
):
    """
    Ask for a fresh alternative for ONE line of the preview.
    Other lines' accepted choices live on the client and are not affected.
    """
    try:
        raw_index = (line_index or "").strip()
        if not (raw_index.isascii() and raw_index.isdigit()):
            raise InvalidInput("'lineIndex' must be a non-negative integer.")
        avoid_list = parse_avoid_field(avoid)
        data = await _read_upload(resume)
        line = await run_in_threadpool(
            pipeline.reroll,
            resume.filename or "",
            data,
            job_description or "",
            int(raw_index),
            avoid_list,
        )
    except TailorError as e:
        return _error_response(e)
    except Exception:
        logger.exception("Error re-rolling line")
        return JSONResponse(status_code=500, content={"error": GENERIC_ERROR})

    return RerollResponse(
        index=line.index,
        originalText=line.original_text,
        suggestedText=line.suggested_text,
        bulletPoint=line.bullet_point,
        structural=line.structural,
        changed=line.changed,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
