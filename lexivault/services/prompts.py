"""Centralized prompt templates for the recognition service."""


class ExtractionPrompt:
    """Prompt for turning a scanned page image into structured Markdown."""

    SYSTEM_MESSAGE = (
        "You are a precise document transcription engine for scanned regulatory and legal "
        "documents. You output only the transcribed page content."
    )

    INSTRUCTIONS = """Extract all text from this scanned document page.

IMPORTANT INSTRUCTIONS:
1. Format the output as clean Markdown.
2. Preserve the document structure:
   - Major divisions (chapters, parts) as ## headings
   - Sections and articles as ### headings
   - Sub-articles, clauses and enumerations as numbered or bulleted lists
3. Convert any tables to Markdown table format.
4. Remove running headers, footers and page numbers.
5. Fix garbled or misrecognised characters using the surrounding context.
6. Keep the original numbering system exactly (e.g. "Article 1", "(1)", "a.").

Return only the extracted Markdown, with no commentary."""


class OutlinePrompt:
    """Prompt for deriving a hierarchical table of contents from page text."""

    SYSTEM_MESSAGE = (
        "You are an expert document indexer. You respond with a JSON array only."
    )

    INSTRUCTIONS = """Analyze the following document content (provided page by page inside <page number="N"> tags) and generate a hierarchical table of contents.

Instructions:
1. Identify the structural headers: chapters, parts, sections, articles.
2. Ignore ordinary body text. Focus on structural headers only.
3. Assign each header an integer level: 1 for the most significant divisions, 2 for the next, and so on.
4. Attach the page number where the header first appears.
5. Keep the headers in reading order.

Output a JSON array. Each item must have:
  - label: string (e.g. "CHAPTER I: GENERAL PROVISIONS" or "Article 1")
  - level: integer >= 1
  - targetPage: integer page number

Example:
[
  {"label": "CHAPTER I: INTRODUCTION", "level": 1, "targetPage": 1},
  {"label": "Article 1", "level": 2, "targetPage": 1}
]

Return ONLY valid JSON. No markdown code blocks."""

    @classmethod
    def build(cls, document_text: str) -> str:
        return f"{cls.INSTRUCTIONS}\n\nDocument content:\n{document_text}"
