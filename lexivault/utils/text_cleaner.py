"""Text cleaning and normalization utilities."""
import re


def clean_text(text: str) -> str:
    """
    Normalize recognised page text while keeping its Markdown structure.

    Args:
        text: Raw text returned by the recognition service

    Returns:
        Text with normalized line breaks and whitespace
    """
    # Normalize line breaks
    text = text.replace("\r\n", "\n").replace("\r", "\n")

    # Remove special control characters but keep newlines and tabs
    text = re.sub(r"[\x00-\x08\x0b-\x0c\x0e-\x1f\x7f]", "", text)

    # Trailing spaces break Markdown table and list rendering
    text = re.sub(r"[ \t]+\n", "\n", text)

    # Remove excessive newlines (more than 2 consecutive)
    text = re.sub(r"\n{3,}", "\n\n", text)

    return text.strip()


def strip_code_fences(text: str) -> str:
    """
    Remove a surrounding Markdown code fence from a model response.

    Args:
        text: Raw model output, possibly wrapped in ```json ... ```

    Returns:
        The fenced content, or the stripped input when no fence is present
    """
    stripped = text.strip()
    match = re.match(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", stripped, re.DOTALL)
    if match:
        return match.group(1).strip()
    return stripped


def make_snippet(text: str, max_chars: int = 200) -> str:
    """Build a search snippet from the start of a page's text."""
    return f"{text[:max_chars].strip()}..."
