import codecs
import locale
import logging
import os
from typing import List

logger = logging.getLogger(__name__)

PRIMARY_ENCODING = "utf-8"
LEGACY_ENCODING = "cp1252"

# BOM -> codec that also strips the BOM on decode
BOM_ENCODINGS = (
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)

_CORRUPTION_MARKERS = ("\ufffd", "?")


def sample_bytes() -> int:
    return int(os.environ.get("IMPORT_ENCODING_SAMPLE_BYTES", "4096"))


def _canonical(name: str) -> str:
    try:
        return codecs.lookup(name).name
    except LookupError:
        return ""


def candidate_encodings() -> List[str]:
    """Primary, legacy Western-European, then the platform default; duplicates removed."""
    out: List[str] = []
    seen = set()
    for name in (PRIMARY_ENCODING, LEGACY_ENCODING, locale.getpreferredencoding(False)):
        key = _canonical(name or "")
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(name)
    return out


def _looks_corrupt(text: str) -> bool:
    return any(marker in text for marker in _CORRUPTION_MARKERS)


def detect_encoding(sample: bytes) -> str:
    head = sample[:4]
    for bom, encoding in BOM_ENCODINGS:
        if head.startswith(bom):
            return encoding

    first_line = sample.split(b"\n", 1)[0]
    for encoding in candidate_encodings():
        text = first_line.decode(encoding, errors="replace")
        if not _looks_corrupt(text):
            return encoding

    # never fail the import over ambiguity; bad bytes show up later as unparseable rows
    logger.warning("encoding detection inconclusive, using %s", PRIMARY_ENCODING)
    return PRIMARY_ENCODING


def detect_file_encoding(path: str) -> str:
    with open(path, "rb") as fh:
        sample = fh.read(sample_bytes())
    encoding = detect_encoding(sample)
    logger.info("detected encoding=%s path=%s", encoding, path)
    return encoding
