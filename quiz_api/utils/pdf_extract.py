import logging
from pathlib import Path
from typing import List

from pypdf import PdfReader
from pypdf.errors import PdfReadError

logger = logging.getLogger(__name__)


def extract_pages(pdf_path: Path) -> List[str]:
    """
    Extrait le texte de chaque page d'un PDF de référence.
    PDF illisible → liste vide (le document est simplement ignoré).
    """
    try:
        reader = PdfReader(str(pdf_path))
    except (PdfReadError, OSError) as e:
        logger.warning("Unreadable reference PDF %s: %s", pdf_path.name, e)
        return []

    pages = []
    for page in reader.pages:
        text = page.extract_text() or ""
        if text.strip():
            pages.append(text)
    return pages


def extract_text(pdf_path: Path) -> str:
    return "\n".join(extract_pages(pdf_path))
