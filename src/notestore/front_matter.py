"""Front matter detection and parsing for markdown documents."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import frontmatter
import yaml

logger = logging.getLogger(__name__)

DELIMITER = "---"


@dataclass(frozen=True)
class FrontMatterBounds:
    """Line span of a front matter block; end is one past the closing delimiter."""
    start: int = 0
    end: int = 0
    found: bool = False


def find_front_matter(lines: list[str]) -> FrontMatterBounds:
    """Find the front matter block at the top of a document.

    Leading blank lines are skipped. The first non-blank line must start with
    the delimiter, and a later line starting with the delimiter closes it. An
    unclosed block counts as no front matter.
    """
    start = 0
    while start < len(lines) and lines[start].strip() == "":
        start += 1

    if start >= len(lines) or not lines[start].strip().startswith(DELIMITER):
        return FrontMatterBounds()

    for i in range(start + 1, len(lines)):
        if lines[i].strip().startswith(DELIMITER):
            return FrontMatterBounds(start=start, end=i + 1, found=True)

    return FrontMatterBounds()


def parse_front_matter(content: str) -> dict[str, Any]:
    """Parse the front matter of a document into a dict.

    Returns an empty dict when there is no block, or when it is not a YAML
    mapping.
    """
    try:
        post = frontmatter.loads(content)
    except (yaml.YAMLError, ValueError) as e:
        logger.debug("Ignoring unparseable front matter: %s", e)
        return {}

    return dict(post.metadata)


def render_document(title: str, description: str, body: str = "") -> str:
    """Render a document with a title/description front matter block above ``body``."""
    post = frontmatter.Post(body, title=title, description=description)
    return frontmatter.dumps(post, sort_keys=False)
