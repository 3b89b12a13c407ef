"""Document loading and text chunking functionality."""

import io
import re
from pathlib import PurePath

import pypdf
from pypdf.errors import PyPdfError

from .config import config
from .models import DocumentChunk

logger = config.get_logger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
TEXT_CONTENT_TYPES = {"text/plain", "text/markdown"}
TEXT_SUFFIXES = {".txt", ".md"}

# A sentence is a run of non-terminators followed by its terminators, if any.
SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]*")
# Rough characters-per-word used to turn the overlap hint into a word count.
CHARS_PER_WORD = 5


class DocumentLoader:
    """Handles text extraction from uploaded PDF and text files."""

    @staticmethod
    def load_pdf(data: bytes, filename: str = "document.pdf") -> str:
        """Extract text content from PDF bytes.

        Returns:
            The extracted text content from the PDF as a string.

        Raises:
            ValueError: If the bytes are not a readable PDF.
        """
        try:
            pdf_reader = pypdf.PdfReader(io.BytesIO(data))
            text = ""
            for page_num, page in enumerate(pdf_reader.pages):
                page_text = page.extract_text() or ""
                text += f"\n--- Page {page_num + 1} ---\n{page_text}\n"
        except PyPdfError as exc:
            logger.exception("Error loading PDF %s", filename)
            msg = f"Could not read PDF file: {filename}"
            raise ValueError(msg) from exc
        else:
            return text

    @staticmethod
    def load_txt(data: bytes) -> str:
        """Decode text file bytes as UTF-8.

        Returns:
            The decoded text, with undecodable bytes replaced.
        """
        return data.decode("utf-8", errors="replace")

    @classmethod
    def load_bytes(cls, data: bytes, filename: str, content_type: str | None) -> str:
        """Load document text based on content type or file extension.

        Args:
            data: Raw uploaded bytes.
            filename: Original file name, used for extension detection.
            content_type: MIME type reported by the client, if any.

        Returns:
            The text content of the document, or a short placeholder when no
            text could be extracted.

        Raises:
            ValueError: If the file type is not supported.
        """
        suffix = PurePath(filename).suffix.lower()
        content_type = (content_type or "").split(";")[0].strip().lower()

        if content_type == PDF_CONTENT_TYPE or suffix == ".pdf":
            text = cls.load_pdf(data, filename)
        elif content_type in TEXT_CONTENT_TYPES or suffix in TEXT_SUFFIXES:
            text = cls.load_txt(data)
        else:
            msg = (
                f"Unsupported file type: {content_type or suffix or 'unknown'}. "
                "Please upload PDF or text files."
            )
            raise ValueError(msg)

        if not text.strip():
            return (
                f"File uploaded: {filename}\nSize: {len(data)} bytes\n"
                "No text content could be extracted."
            )
        logger.info("Loaded %s (%d characters)", filename, len(text))
        return text.strip()


class TextChunker:
    """Splits text into sentence-aligned chunks with a word-level overlap.

    Chunk size is a soft target: sentences are never split, so a single
    sentence longer than ``chunk_size`` becomes a chunk of its own.
    """

    def __init__(self, chunk_size: int = 300, overlap: int = 50) -> None:
        """Initialize the TextChunker with chunk size and overlap hint.

        Args:
            chunk_size: Target maximum number of characters per chunk.
            overlap: Approximate number of characters carried over from the
                end of one chunk into the next.
        """
        self.chunk_size = chunk_size
        self.overlap = overlap

    @property
    def overlap_words(self) -> int:
        return self.overlap // CHARS_PER_WORD

    @staticmethod
    def split_sentences(text: str) -> list[str]:
        """Split text on sentence terminators, dropping blank sentences.

        Returns:
            Trimmed sentences in document order.
        """
        sentences = (match.strip() for match in SENTENCE_PATTERN.findall(text))
        return [sentence for sentence in sentences if sentence.strip(".!? \n\t")]

    def _seed(self, previous: str, sentence: str) -> str:
        """Start a new chunk with overlap words from the previous one.

        Leading overlap words are dropped until the seed fits the target size.

        Returns:
            The opening text of the next chunk.
        """
        words = previous.split()
        carried = words[-self.overlap_words :] if self.overlap_words else []
        while carried:
            candidate = " ".join([*carried, sentence])
            if len(candidate) <= self.chunk_size:
                return candidate
            carried = carried[1:]
        return sentence

    def chunk_text(self, text: str, filename: str = "document") -> list[DocumentChunk]:
        """Split text into overlapping, sentence-aligned chunks.

        Returns:
            A list of DocumentChunk objects in document order, each carrying
            the total chunk count of the file.
        """
        contents: list[str] = []
        current = ""

        for sentence in self.split_sentences(text):
            if current and len(current) + 1 + len(sentence) > self.chunk_size:
                contents.append(current.strip())
                current = self._seed(current, sentence)
            else:
                current = f"{current} {sentence}" if current else sentence

        if current.strip():
            contents.append(current.strip())

        chunks = [
            DocumentChunk(
                id=f"{filename}-chunk-{index}",
                content=content,
                metadata={
                    "filename": filename,
                    "chunk_index": index,
                    "total_chunks": len(contents),
                },
            )
            for index, content in enumerate(contents)
        ]

        logger.info("Text from %s split into %d chunks", filename, len(chunks))
        return chunks
