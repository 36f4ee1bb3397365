"""
Text extraction backend: PDF text layer and OCR for images.

Rationale:
- The pipeline only needs extract_text(file_name, content) -> ExtractedDocument;
  everything format-specific stays in this module.
- Images are normalized before OCR (downscale to 1200px high, greyscale,
  autocontrast, sharpen); if preprocessing fails the original image is used.
"""

import io
import logging
import os

import fitz  # PyMuPDF
import pytesseract
from PIL import Image, ImageFilter, ImageOps

from .errors import NoReadableContent, UnsupportedFormat
from .schemas import ExtractedDocument, FileType

logger = logging.getLogger(__name__)

MIN_TEXT_CHARS = 50
OCR_TARGET_HEIGHT = 1200
OCR_LANGUAGES = os.getenv("OCR_LANGUAGES", "eng")

_FILE_TYPES = {
    ".pdf": FileType.PDF,
    ".png": FileType.PNG,
    ".jpg": FileType.JPG,
    ".jpeg": FileType.JPEG,
}


def detect_file_type(file_name: str) -> FileType:
    extension = os.path.splitext(file_name or "")[1].lower()
    if extension not in _FILE_TYPES:
        raise UnsupportedFormat(f"Unsupported file format: {extension or '(none)'}")
    return _FILE_TYPES[extension]


def extract_pdf_text(content: bytes) -> str:
    """Concatenate the text layer of every page."""
    try:
        with fitz.open(stream=content, filetype="pdf") as doc:
            pages = [page.get_text("text") for page in doc]
    except (RuntimeError, ValueError) as e:
        raise NoReadableContent(f"Failed to extract text from PDF: {e}") from e

    text = "\n".join(pages)
    if not text.strip():
        raise NoReadableContent("PDF contains no readable text")
    return text


def preprocess_image(image: Image.Image) -> Image.Image:
    """Greyscale, normalize and sharpen; never enlarges."""
    try:
        if image.height > OCR_TARGET_HEIGHT:
            width = max(1, round(image.width * OCR_TARGET_HEIGHT / image.height))
            image = image.resize((width, OCR_TARGET_HEIGHT), Image.Resampling.LANCZOS)
        image = ImageOps.grayscale(image)
        image = ImageOps.autocontrast(image)
        return image.filter(ImageFilter.SHARPEN)
    except (OSError, ValueError) as e:
        logger.warning(f"Image preprocessing failed, using original: {e}")
        return image


def extract_image_text(content: bytes) -> str:
    try:
        image = Image.open(io.BytesIO(content))
        image.load()
    except (OSError, ValueError) as e:
        raise NoReadableContent(f"Failed to extract text from image: {e}") from e

    try:
        text = pytesseract.image_to_string(preprocess_image(image), lang=OCR_LANGUAGES)
    except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
        raise NoReadableContent(f"Failed to extract text from image: {e}") from e

    if not text or not text.strip():
        raise NoReadableContent("No text found in image")
    return text


def extract_text(file_name: str, content: bytes) -> ExtractedDocument:
    """
    Extract text from an uploaded PDF or image.

    Raises UnsupportedFormat for other file types and NoReadableContent when
    fewer than MIN_TEXT_CHARS characters of text come out.
    """
    file_type = detect_file_type(file_name)
    logger.info(f"Processing file: {file_name}")

    if file_type is FileType.PDF:
        text = extract_pdf_text(content)
    else:
        text = extract_image_text(content)

    if len(text.strip()) < MIN_TEXT_CHARS:
        raise NoReadableContent("No readable content found in the document")

    logger.info(f"Text extracted successfully: {len(text)} characters")
    return ExtractedDocument(text=text, file_name=file_name, file_type=file_type, length=len(text))
