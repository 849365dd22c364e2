import logging
import zipfile
from io import BytesIO

from errors import MalformedPackage

logger = logging.getLogger(__name__)

BODY_ENTRY = "word/document.xml"

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _open_zip(data: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(BytesIO(data))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as e:
        raise MalformedPackage(f"Could not open the document package: {e}") from e


def read_body_markup(data: bytes) -> str:
    """
    Return the text of word/document.xml from raw .docx bytes.

    Raises MalformedPackage if the bytes are not a zip archive, the body
    entry is missing, or it is not valid UTF-8.
    """
    with _open_zip(data) as zf:
        try:
            raw = zf.read(BODY_ENTRY)
        except KeyError as e:
            raise MalformedPackage(f"Could not read {BODY_ENTRY} from docx file") from e
        except (zipfile.BadZipFile, RuntimeError, OSError) as e:
            # Corrupt entry data, unsupported compression or encryption.
            raise MalformedPackage(f"Could not read {BODY_ENTRY}: {e}") from e

    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedPackage(f"{BODY_ENTRY} is not valid UTF-8") from e


def replace_body_markup(data: bytes, markup: str) -> bytes:
    """
    Build a new archive where only word/document.xml carries `markup`.

    Every other entry is copied byte-for-byte, in the original order, with
    its original ZipInfo (compression type, timestamps, attributes). The
    input bytes are left alone.
    """
    new_body = markup.encode("utf-8")

    out_buf = BytesIO()
    with _open_zip(data) as zin:
        if zin.read(BODY_ENTRY) == new_body:
            return data

        with zipfile.ZipFile(out_buf, "w") as zout:
            zout.comment = zin.comment
            for info in zin.infolist():
                payload = new_body if info.filename == BODY_ENTRY else zin.read(info)
                zout.writestr(info, payload, compress_type=info.compress_type)

    logger.debug("Repackaged docx with %d entries", len(zin.infolist()))
    return out_buf.getvalue()


def tailored_filename(name: str) -> str:
    """'Jane_Doe.docx' -> 'Jane_Doe_tailored.docx'"""
    base = (name or "").strip() or "resume.docx"
    if base.lower().endswith(".docx"):
        base = base[: -len(".docx")]
    return f"{base}_tailored.docx"
