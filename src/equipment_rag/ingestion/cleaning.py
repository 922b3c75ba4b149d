"""Text cleanup between extraction and chunking.

Two passes over the extracted text:

1. clean_for_rag() removes page markers and rebuilds coherent paragraphs
   from the short, broken lines that OCR and PDF text layers produce.
2. mark_sections() tags major section headers with SECTION_MARKER so the
   chunker can split the document along its own structure.

Header detection is deliberately conservative. A false header splits a
paragraph in two, which hurts retrieval more than a missed header does.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

SECTION_MARKER = "§§§SECTION§§§"

_PAGE_MARKER_RE = re.compile(r"\[Page \d+\]", re.IGNORECASE)
_PAGE_FOOTER_RE = re.compile(r"^Page \d+/\d+$", re.MULTILINE)
_NUMBERED_HEADER_RE = re.compile(r"^\d+[.\-]\s*[A-Z]")
_NUMBERED_SECTION_RE = re.compile(r"^\d{1,2}\.-\s+[A-Z\s]{15,}$", re.IGNORECASE)
_FRENCH_SECTION_RE = re.compile(
    r"^(MODES?\s+DE\s+FONCTIONNEMENT"
    r"|CONSIGNES?\s+DE\s+SECURITE"
    r"|ANOMALIES?\s+(ET\s+)?SOLUTIONS?"
    r"|MAINTENANCE\s+PREVENTIVE"
    r"|CARACTERISTIQUES\s+TECHNIQUES"
    r"|DONNEES\s+A\s+PROGRAMMER"
    r"|FONCTIONNEMENT\s+(MANUEL|AUTOMATIQUE)"
    r"|FACTEURS?\s+A\s+CONSIDERER)",
    re.IGNORECASE,
)
_LIST_ITEM_RE = re.compile(r"^([-•*]|\d+[.)])\s")
_CODE_LINE_RE = re.compile(r"^[A-Z]\d")
_NUMBER_LINE_RE = re.compile(r"^\d{2,}")

# Paragraphs are flushed once they reach this size and end a sentence
_PARAGRAPH_FLUSH_CHARS = 500


def _is_major_section(line: str) -> bool:
    return (
        line == line.upper()
        and 20 <= len(line) <= 60
        and len(line.split()) >= 3
        and line[:1].isalpha()
        and line[:1].isupper()
        and "-" not in line
        and "." not in line
    )


def clean_for_rag(text: str) -> str:
    """Strip extraction artefacts and merge lines into paragraphs.

    Page markers and "Page x/y" footers are removed. Lines are merged into
    running paragraphs that are only broken on major headers, or when the
    paragraph is long and ends a sentence. Paragraphs are separated by a
    blank line.
    """
    cleaned = _PAGE_MARKER_RE.sub("", text)
    cleaned = _PAGE_FOOTER_RE.sub("", cleaned)
    cleaned = cleaned.replace("\f", " ").replace("\r\n", "\n").replace("\t", " ")

    lines = [line.strip() for line in cleaned.split("\n") if line.strip()]

    paragraphs: list[str] = []
    paragraph = ""
    for line in lines:
        is_numbered_header = bool(_NUMBERED_HEADER_RE.match(line)) and len(line) < 50
        if _is_major_section(line) or is_numbered_header:
            if paragraph:
                paragraphs.append(paragraph)
                paragraph = ""
            paragraphs.append(line)
            continue

        paragraph = f"{paragraph} {line}" if paragraph else line
        if len(paragraph) >= _PARAGRAPH_FLUSH_CHARS and paragraph[-1] in ".!?":
            paragraphs.append(paragraph)
            paragraph = ""

    if paragraph:
        paragraphs.append(paragraph)

    result = "\n\n".join(
        p for p in (re.sub(r" {2,}", " ", p).strip() for p in paragraphs) if p
    )
    logger.debug(
        "Cleaned %d lines into %d paragraphs (%d chars)",
        len(lines),
        len(paragraphs),
        len(result),
    )
    return result


def is_section_header(line: str) -> bool:
    """Whether a line starts a major document section."""
    all_caps_header = (
        line == line.upper()
        and 20 <= len(line) <= 100
        and len(line.split()) >= 3
        and re.search(r"[A-Z]{3,}", line) is not None
        and not line.isdigit()
        and "©" not in line
        and "®" not in line
        and "==" not in line
        and "--" not in line
    )
    if all_caps_header:
        return True
    if _NUMBERED_SECTION_RE.match(line) and len(line) >= 20:
        return True
    return bool(_FRENCH_SECTION_RE.match(line)) and len(line) >= 20


def mark_sections(text: str) -> str:
    """Prefix major section headers with SECTION_MARKER.

    List items are kept on their own lines. Short fragments (< 40 chars) are
    folded into the previous line unless that line is a header, either line
    ends with a colon, or the fragment looks like a code ("F1") or a number.
    Nothing is ever merged across a header.
    """
    processed: list[str] = []
    for line in (raw.strip() for raw in text.split("\n")):
        if not line:
            processed.append("")
            continue

        if is_section_header(line):
            processed.append(f"\n\n{SECTION_MARKER} {line}\n")
            continue

        if _LIST_ITEM_RE.match(line):
            processed.append(line)
            continue

        if len(line) < 40 and processed and processed[-1]:
            previous = processed[-1]
            if (
                SECTION_MARKER not in previous
                and not previous.endswith(":")
                and not line.endswith(":")
                and not _CODE_LINE_RE.match(line)
                and not _NUMBER_LINE_RE.match(line)
            ):
                processed[-1] = f"{previous} {line}"
                continue

        processed.append(line)

    marked = "\n".join(processed)
    marked = re.sub(r"\n{4,}", "\n\n\n", marked)
    marked = re.sub(r"[ \t]+", " ", marked).strip()
    logger.debug("Marked %d sections", marked.count(SECTION_MARKER))
    return marked
