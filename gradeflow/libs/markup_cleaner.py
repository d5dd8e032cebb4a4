"""Strip markdown, code fences and citation debris from LLM output.

Output from every provider is treated as plain prose, so this runs once on the
final combined text rather than on each chunk.
"""

import re

_CODE_FENCE = re.compile(r'```[^\n]*\n?[\s\S]*?```')
_UNCLOSED_FENCE = re.compile(r'```[^\n]*')
_INLINE_CODE = re.compile(r'`([^`\n]*)`')
_HEADING = re.compile(r'^[ \t]*#{1,6}[ \t]*', re.MULTILINE)
_STRAY_HASHES = re.compile(r'(?<![\w&])#{1,6}(?=[ \t]|$)', re.MULTILINE)
_BOLD_ITALIC = re.compile(r'(\*{1,3})(?=\S)(.+?)(?<=\S)\1')
_UNDERSCORE_EMPHASIS = re.compile(r'(?<!\w)(_{1,3})(?=\S)(.+?)(?<=\S)\1(?!\w)')
_STRAY_STARS = re.compile(r'\*{2,}')
_LIST_MARKER = re.compile(r'^[ \t]*[-+*][ \t]+', re.MULTILINE)
_LINK = re.compile(r'\[([^\]]+)\]\([^)]+\)')
_CITATION_NUMBER = re.compile(r'[ \t]?\[\d+(?:[,\s\-]+\d+)*\]')
_CITATIONS_JSON = re.compile(r'\{\s*"citations"[\s\S]*?\}\s*')
_NUMBERED_URL_LINE = re.compile(r'^[ \t]*\d+\.[ \t]+https?://\S+[ \t]*$', re.MULTILINE)
_URL_LINE = re.compile(r'^[ \t]*https?://\S+[ \t]*$', re.MULTILINE)
_CITATIONS_SECTION = re.compile(r'^[ \t]*(?:Citations|Sources|References):[ \t]*(?:\n(?!\n).*)*', re.MULTILINE)
_EXTRA_NEWLINES = re.compile(r'\n{3,}')
_TRAILING_SPACE = re.compile(r'[ \t]+$', re.MULTILINE)


def clean_llm_response(text: str) -> str:
    """
    Remove residual structural markup from LLM text.

    Headings, emphasis markers, code fences, list bullets, markdown links,
    bracketed citation numbers and trailing citation sections are removed while
    the words they wrap are kept.

    Args:
        text: Raw or combined LLM output

    Returns:
        Plain prose with paragraphs separated by single blank lines
    """
    if not text:
        return ''

    clean = _CODE_FENCE.sub('', text)
    clean = _UNCLOSED_FENCE.sub('', clean)
    clean = _CITATIONS_JSON.sub('', clean)
    clean = _INLINE_CODE.sub(r'\1', clean)

    clean = _HEADING.sub('', clean)
    clean = _BOLD_ITALIC.sub(r'\2', clean)
    clean = _UNDERSCORE_EMPHASIS.sub(r'\2', clean)
    clean = _STRAY_STARS.sub('', clean)
    clean = _STRAY_HASHES.sub('', clean)
    clean = _LIST_MARKER.sub('', clean)
    clean = _LINK.sub(r'\1', clean)

    clean = _CITATIONS_SECTION.sub('', clean)
    clean = _NUMBERED_URL_LINE.sub('', clean)
    clean = _URL_LINE.sub('', clean)
    clean = _CITATION_NUMBER.sub('', clean)

    clean = _TRAILING_SPACE.sub('', clean)
    clean = _EXTRA_NEWLINES.sub('\n\n', clean)
    return clean.strip()
