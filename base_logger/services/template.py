"""Parser for ``${tag}`` access log templates.

A template is split once, at configuration time, into literal segments
and tag names. Rendering then only has to interleave the literals with
resolved tag values.

Example:
    >>> t = compile_template('{"status":${status}}')
    >>> t.texts, t.tags
    (('{"status":', '}'), ('status',))
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from base_logger.utils.exceptions import TemplateSyntaxError

START_TAG = "${"
END_TAG = "}"


@dataclass(frozen=True)
class Template:
    """Immutable parsed form of a format string.

    Attributes:
        source: The original format string.
        texts: Literal segments; always ``len(tags) + 1`` of them.
        tags: Tag names in order of appearance.
        start_tag: Opening delimiter.
        end_tag: Closing delimiter.
    """

    source: str
    texts: tuple[str, ...]
    tags: tuple[str, ...]
    start_tag: str = START_TAG
    end_tag: str = END_TAG

    def segments(self) -> Iterator[tuple[str, str | None]]:
        """Yield ``(literal, tag)`` pairs; the final pair has tag None."""
        for text, tag in zip(self.texts, self.tags):
            yield text, tag
        yield self.texts[-1], None


def compile_template(source: str, start_tag: str = START_TAG, end_tag: str = END_TAG) -> Template:
    """Parse a format string into a Template.

    Args:
        source: Format string containing ``${tag}`` placeholders.
        start_tag: Opening delimiter.
        end_tag: Closing delimiter.

    Returns:
        The parsed Template.

    Raises:
        TemplateSyntaxError: If a start delimiter has no matching end
            delimiter, or a tag contains another start delimiter.
    """
    if not start_tag or not end_tag:
        raise ValueError("Template delimiters must be non-empty")

    texts: list[str] = []
    tags: list[str] = []
    pos = 0
    while True:
        start = source.find(start_tag, pos)
        if start < 0:
            texts.append(source[pos:])
            break
        texts.append(source[pos:start])

        tag_start = start + len(start_tag)
        end = source.find(end_tag, tag_start)
        if end < 0:
            raise TemplateSyntaxError(f"Cannot find end tag '{end_tag}'", start)

        tag = source[tag_start:end]
        if start_tag in tag:
            raise TemplateSyntaxError(f"Unclosed tag before nested '{start_tag}'", start)
        tags.append(tag)
        pos = end + len(end_tag)

    return Template(
        source=source,
        texts=tuple(texts),
        tags=tuple(tags),
        start_tag=start_tag,
        end_tag=end_tag,
    )
