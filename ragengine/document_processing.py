"""Document loading and text chunking functionality."""

import math
import re
from dataclasses import dataclass
from pathlib import Path

import pypdf

from .config import config
from .models import (
    ChunkStats,
    ChunkValidation,
    Document,
    DocumentChunk,
)

logger = config.get_logger(__name__)

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
SENTENCE = re.compile(r"[^.!?]*[.!?]+|[^.!?]+")


class DocumentLoader:
    """Handles loading of PDF and TXT documents."""

    @staticmethod
    def load_pdf(file_path: Path) -> str:
        """Load text content from a PDF file.

        Returns:
            The extracted text content from the PDF as a string.
        """
        try:
            with file_path.open("rb") as file:
                pdf_reader = pypdf.PdfReader(file)
                pages = [page.extract_text() or "" for page in pdf_reader.pages]
        except Exception:
            logger.exception("Error loading PDF %s", file_path)
            raise
        else:
            # Blank lines between pages give the paragraph splitter a boundary.
            return "\n\n".join(page.strip() for page in pages if page.strip())

    @staticmethod
    def load_txt(file_path: Path) -> str:
        """Load text content from a TXT file.

        Returns:
            The extracted text content from the TXT file as a string.
        """
        try:
            with file_path.open(encoding="utf-8") as file:
                text = file.read()
            logger.info("Successfully loaded TXT file")
        except Exception:
            logger.exception("Error loading TXT %s", file_path)
            raise
        else:
            return text

    @classmethod
    def load_document(cls, file_path: Path) -> str:
        """Load document based on file extension.

        Args:
            file_path: Path to the document file.

        Returns:
            The text content of the document as a string.

        Raises:
            ValueError: If the file type is not supported.
        """
        file_ext = file_path.suffix.lower()
        if file_ext == ".pdf":
            return cls.load_pdf(file_path)
        if file_ext in {".txt", ".md"}:
            return cls.load_txt(file_path)
        msg = f"Unsupported file type: {file_ext}"
        raise ValueError(msg)


@dataclass(frozen=True)
class ChunkingOptions:
    """Size limits and boundary preferences for chunking."""

    max_chunk_size: int = 1000
    overlap_size: int = 200
    min_chunk_size: int = 100
    preserve_paragraphs: bool = True
    preserve_sentences: bool = True

    def __post_init__(self) -> None:
        """Check the size limits are consistent with each other.

        Raises:
            ValueError: If the sizes cannot produce progressing chunks.
        """
        if self.max_chunk_size <= 0:
            msg = f"max_chunk_size must be positive, got {self.max_chunk_size}"
            raise ValueError(msg)
        if not 0 <= self.overlap_size < self.max_chunk_size:
            msg = (
                f"overlap_size must be in [0, {self.max_chunk_size}), "
                f"got {self.overlap_size}"
            )
            raise ValueError(msg)
        if not 0 <= self.min_chunk_size <= self.max_chunk_size:
            msg = (
                f"min_chunk_size must be in [0, {self.max_chunk_size}], "
                f"got {self.min_chunk_size}"
            )
            raise ValueError(msg)

    @classmethod
    def from_config(cls) -> "ChunkingOptions":
        """Build options from the application configuration.

        Returns:
            ChunkingOptions populated from config.
        """
        return cls(
            max_chunk_size=config.RAG_MAX_CHUNK_SIZE,
            overlap_size=config.RAG_OVERLAP_SIZE,
            min_chunk_size=config.RAG_MIN_CHUNK_SIZE,
        )


class TextChunker:
    """Splits documents into size-bounded, overlapping, boundary-aware chunks.

    Splitting tries paragraphs first, then sentences, then a sliding
    character window, and keeps the first strategy that produces more than
    one segment. Paragraph and sentence packing drop no text: a segment that
    ends up below ``min_chunk_size`` is folded into the previous chunk when
    that still fits ``max_chunk_size`` and kept on its own otherwise.
    """

    def __init__(self, options: ChunkingOptions | None = None) -> None:
        """Initialize the TextChunker.

        Args:
            options: Default chunking options. If None, read from config.
        """
        self.options = options or ChunkingOptions.from_config()

    def chunk_document(
        self,
        document: Document,
        options: ChunkingOptions | None = None,
    ) -> list[DocumentChunk]:
        """Split a document into ordered chunks.

        Args:
            document: Document to split.
            options: Per-call override of the chunker's default options.

        Returns:
            Chunks with contiguous ``chunk_index`` values and a uniform
            ``total_chunks``.
        """
        opts = options or self.options
        content = document.content

        logger.debug(
            "Chunking document %s (%d chars, max=%d, overlap=%d, min=%d)",
            document.id,
            len(content),
            opts.max_chunk_size,
            opts.overlap_size,
            opts.min_chunk_size,
        )

        if len(content) <= opts.max_chunk_size:
            return [self._create_chunk(document, content, 0, 1)]

        segments = self.split_text(content, opts)
        if not segments:
            logger.warning(
                "Document %s has no text content; storing a single blank chunk",
                document.id,
            )
            segments = [content[: opts.max_chunk_size]]

        chunks = [
            self._create_chunk(document, segment, index, len(segments))
            for index, segment in enumerate(segments)
        ]

        logger.debug(
            "Chunked document %s into %d chunks (avg %.1f chars)",
            document.id,
            len(chunks),
            sum(len(chunk.content) for chunk in chunks) / len(chunks),
        )
        return chunks

    def split_text(
        self,
        text: str,
        options: ChunkingOptions | None = None,
    ) -> list[str]:
        """Split raw text using the paragraph -> sentence -> character fallback.

        Returns:
            Ordered list of chunk texts.
        """
        opts = options or self.options

        if opts.preserve_paragraphs:
            paragraph_chunks = self.split_by_paragraphs(text, opts)
            if len(paragraph_chunks) > 1:
                return self.add_overlap(paragraph_chunks, opts.overlap_size)

        if opts.preserve_sentences:
            sentence_chunks = self.split_by_sentences(text, opts)
            if len(sentence_chunks) > 1:
                return self.add_overlap(sentence_chunks, opts.overlap_size)

        return self.split_by_characters(text, opts)

    def split_by_paragraphs(self, text: str, options: ChunkingOptions) -> list[str]:
        """Greedily pack blank-line separated paragraphs.

        Returns:
            Packed segments without overlap, or ``[text]`` when the text has
            a single paragraph.
        """
        paragraphs = [p.strip() for p in PARAGRAPH_BREAK.split(text) if p.strip()]
        if len(paragraphs) <= 1:
            return [text]

        chunks: list[str] = []
        current = ""
        separator = "\n\n"

        for paragraph in paragraphs:
            candidate = f"{current}{separator}{paragraph}" if current else paragraph
            if len(candidate) <= options.max_chunk_size:
                current = candidate
                continue

            if current:
                self._append_segment(chunks, current, separator, options)
            current = ""

            if len(paragraph) > options.max_chunk_size:
                pieces = self.split_by_sentences(paragraph, options)
                if len(pieces) == 1:
                    pieces = self.split_by_characters(paragraph, options)
                for piece in pieces:
                    self._append_segment(chunks, piece, " ", options)
            else:
                current = paragraph

        if current:
            self._append_segment(chunks, current, separator, options)

        return chunks

    def split_by_sentences(self, text: str, options: ChunkingOptions) -> list[str]:
        """Greedily pack sentences, each keeping its own terminal punctuation.

        Returns:
            Packed segments without overlap, or ``[text]`` when the text has
            a single sentence.
        """
        sentences = [s.strip() for s in SENTENCE.findall(text) if s.strip()]
        if len(sentences) <= 1:
            return [text]

        chunks: list[str] = []
        current = ""

        for sentence in sentences:
            candidate = f"{current} {sentence}" if current else sentence
            if len(candidate) <= options.max_chunk_size:
                current = candidate
                continue

            if current:
                self._append_segment(chunks, current, " ", options)
            current = ""

            if len(sentence) > options.max_chunk_size:
                chunks.extend(self.split_by_characters(sentence, options))
            else:
                current = sentence

        if current:
            self._append_segment(chunks, current, " ", options)

        return chunks

    @staticmethod
    def split_by_characters(text: str, options: ChunkingOptions) -> list[str]:
        """Slide a ``max_chunk_size`` window over the text.

        A window ending inside a word backs off to the preceding space, as
        long as the shortened slice still meets ``min_chunk_size``. The next
        window starts ``overlap_size`` characters before the previous end.

        Returns:
            Ordered chunk texts; consecutive chunks share their overlap.
        """
        chunks: list[str] = []
        text_length = len(text)
        start = 0

        while start < text_length:
            end = min(start + options.max_chunk_size, text_length)

            inside_word = (
                end < text_length
                and not text[end].isspace()
                and not text[end - 1].isspace()
            )
            if inside_word:
                last_space = text.rfind(" ", start, end)
                if last_space - start >= options.min_chunk_size:
                    end = last_space

            piece = text[start:end].strip()
            is_last = end >= text_length
            if piece and (len(piece) >= options.min_chunk_size or is_last):
                chunks.append(piece)

            if is_last:
                break
            start = max(end - options.overlap_size, start + 1)

        return chunks

    @staticmethod
    def add_overlap(chunks: list[str], overlap_size: int) -> list[str]:
        """Prefix each chunk with the tail of its predecessor.

        The injected prefix is exactly ``overlap_size`` characters: the last
        ``overlap_size - 1`` characters of the previous chunk and a space, not
        the full ``overlap_size`` tail plus a space. An overlapped chunk is
        therefore at most ``max_chunk_size + overlap_size`` long, the limit
        ``validate_chunks`` enforces.
        Chunks that already open with the previous chunk's tail (pieces cut by
        the character window) are left alone.

        Returns:
            Chunks with overlap injected.
        """
        if len(chunks) <= 1 or overlap_size <= 0:
            return chunks

        tail_size = max(overlap_size - 1, 1)
        overlapped = [chunks[0]]
        for previous, chunk in zip(chunks, chunks[1:], strict=False):
            overlap_text = previous[-tail_size:]
            if chunk.startswith((overlap_text, previous[-overlap_size:])):
                overlapped.append(chunk)
            else:
                overlapped.append(f"{overlap_text} {chunk}")
        return overlapped

    @staticmethod
    def _append_segment(
        chunks: list[str],
        segment: str,
        separator: str,
        options: ChunkingOptions,
    ) -> None:
        """Append a packed segment, folding undersized ones into the previous."""
        segment = segment.strip()
        if not segment:
            return
        if len(segment) >= options.min_chunk_size or not chunks:
            chunks.append(segment)
            return

        merged = f"{chunks[-1]}{separator}{segment}"
        if len(merged) <= options.max_chunk_size:
            chunks[-1] = merged
        else:
            chunks.append(segment)

    @staticmethod
    def _create_chunk(
        document: Document,
        content: str,
        chunk_index: int,
        total_chunks: int,
    ) -> DocumentChunk:
        embedding = document.embedding if total_chunks == 1 else None
        return DocumentChunk(
            id=DocumentChunk.make_id(document.id, chunk_index),
            content=content,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
            metadata=document.metadata.copy(),
            embedding=embedding,
        )

    @staticmethod
    def merge_chunks(
        chunks: list[DocumentChunk],
        overlap_size: int | None = None,
    ) -> Document:
        """Reassemble a document from its chunks.

        Args:
            chunks: Chunks of a single document, in any order.
            overlap_size: When given, the injected overlap prefix is removed
                from every chunk after the first.

        Returns:
            Document whose content joins the chunks with blank lines.

        Raises:
            ValueError: If no chunks are provided.
        """
        if not chunks:
            msg = "Cannot merge empty chunks list"
            raise ValueError(msg)

        ordered = sorted(chunks, key=lambda chunk: chunk.chunk_index)
        contents = [ordered[0].content]
        tail_size = max((overlap_size or 0) - 1, 1)

        for previous, chunk in zip(ordered, ordered[1:], strict=False):
            content = chunk.content
            if overlap_size:
                prefix = f"{previous.content[-tail_size:]} "
                content = content.removeprefix(prefix)
            contents.append(content)

        return Document(
            id=ordered[0].document_id,
            content="\n\n".join(contents),
            metadata=ordered[0].metadata.copy(),
        )

    def validate_chunks(self, chunks: list[DocumentChunk]) -> ChunkValidation:
        """Check size limits and index contiguity of a chunk list.

        Chunks may exceed ``max_chunk_size`` by the injected overlap; the last
        chunk may fall below ``min_chunk_size``.

        Returns:
            ChunkValidation with the issues found and size statistics.
        """
        if not chunks:
            return ChunkValidation(
                is_valid=False, issues=["No chunks provided"], stats=ChunkStats()
            )

        issues: list[str] = []
        sizes = [len(chunk.content) for chunk in chunks]
        total = len(chunks)
        stats = ChunkStats(
            total_chunks=total,
            avg_chunk_size=sum(sizes) / total,
            min_chunk_size=min(sizes),
            max_chunk_size=max(sizes),
        )

        size_limit = self.options.max_chunk_size + self.options.overlap_size
        if total > 1 and stats.max_chunk_size > size_limit:
            issues.append(f"Chunk too large: {stats.max_chunk_size} > {size_limit}")

        ordered = sorted(chunks, key=lambda chunk: chunk.chunk_index)
        undersized = [
            len(chunk.content)
            for chunk in ordered[:-1]
            if len(chunk.content) < self.options.min_chunk_size
        ]
        if undersized:
            issues.append(
                f"Chunk too small: {min(undersized)} < {self.options.min_chunk_size}"
            )

        if sorted(chunk.chunk_index for chunk in chunks) != list(range(total)):
            issues.append("Chunk indices are not sequential")

        if any(chunk.total_chunks != total for chunk in chunks):
            issues.append("Inconsistent total_chunks across chunks")

        return ChunkValidation(is_valid=not issues, issues=issues, stats=stats)

    def get_optimal_chunk_size(self, text: str) -> int:
        """Chunk size that splits ``text`` into evenly sized pieces.

        Returns:
            The text length for short texts, otherwise the even share of the
            minimum number of ``max_chunk_size`` pieces.
        """
        text_length = len(text)
        if text_length <= self.options.max_chunk_size:
            return text_length

        ideal_chunks = math.ceil(text_length / self.options.max_chunk_size)
        return math.ceil(text_length / ideal_chunks)
