"""
Markdown Codec - Entity records to and from markdown documents.

Each entity is one markdown file with YAML frontmatter:

---
entityType: Person
created: ISO timestamp
updated: ISO timestamp
---

# Alice

## Observations

- Likes tea

## Relations

- [[Bob::knows]]
- [[Carol]]

Sections other than Observations and Relations are carried through
verbatim, so hand-edited files survive a read-modify-write.
"""

import re
from typing import Any

import frontmatter
import yaml

from vaultmem.core.config import get_logger
from vaultmem.core.errors import ParseFailureError
from vaultmem.core.types import Entity, RelationLink, parse_timestamp

logger = get_logger("storage.markdown")

OBSERVATIONS_HEADING = "Observations"
RELATIONS_HEADING = "Relations"

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")
_BULLET_RE = re.compile(r"^[-*+](?:\s+|$)")
_WIKILINK_RE = re.compile(r"\[\[((?:\\.|[^\[\]\\])+?)\]\]")
_LINK_ESCAPE_RE = re.compile(r"\\(.)")
_LINK_SPECIALS = "\\[]|:"
_BOLD_META_RE = re.compile(r"^\*\*([^*]+?):?\*\*:?\s*(.*)$")
_NEWLINES_RE = re.compile(r"\s*[\r\n]+\s*")

_TYPE_KEYS = ("entityType", "entity_type", "type")
_KNOWN_KEYS = set(_TYPE_KEYS) | {"created", "updated"}


def normalize_observation(text: str) -> str:
    """Collapse embedded newlines so an observation fits on one bullet line."""
    return _NEWLINES_RE.sub(" ", str(text)).strip()


def _escape_observation(text: str) -> str:
    # A leading ** would read back as metadata
    if text.startswith("**") or text.startswith("\\"):
        return "\\" + text
    return text


def _unescape_observation(text: str) -> str:
    return text[1:] if text.startswith("\\") else text


def _escape_link_part(text: str) -> str:
    return "".join("\\" + ch if ch in _LINK_SPECIALS else ch for ch in text)


def _unescape_link_part(text: str) -> str:
    return _LINK_ESCAPE_RE.sub(r"\1", text)


def _split_unescaped(token: str, sep: str) -> tuple[str, str]:
    """Split at the first `sep` not preceded by a backslash escape."""
    i = 0
    while i < len(token):
        if token[i] == "\\":
            i += 2
            continue
        if token.startswith(sep, i):
            return token[:i], token[i + len(sep):]
        i += 1
    return token, ""


def format_relation(link: RelationLink) -> str:
    """Render a relation as a wikilink token, escaping `[ ] | : \\`."""
    target = _escape_link_part(link.target)
    if link.type:
        return f"[[{target}::{_escape_link_part(link.type)}]]"
    return f"[[{target}]]"


def parse_wikilinks(text: str) -> list[tuple[str, str | None]]:
    """
    Parse wikilink tokens from text.

    Accepts [[target]], [[target::type]] and Obsidian aliases
    ([[target|display]]). Backslash escapes written by format_relation
    are honoured. Returns (target, type) tuples.
    """
    links = []
    for token in _WIKILINK_RE.findall(text):
        target, rel_type = _split_unescaped(token, "::")
        target, _ = _split_unescaped(target, "|")
        target = _unescape_link_part(target.strip())
        if not target:
            continue
        links.append((target, _unescape_link_part(rel_type.strip()) or None))
    return links


def render_body(entity: Entity) -> str:
    """Render the markdown body (everything below the frontmatter)."""
    parts = [f"# {entity.name}"]

    if entity.preamble.strip():
        parts.append(entity.preamble.strip("\n"))

    observation_lines = [f"## {OBSERVATIONS_HEADING}"]
    if entity.observations:
        observation_lines.append("")
        observation_lines.extend(
            f"- {_escape_observation(normalize_observation(obs))}"
            for obs in entity.observations
        )
    parts.append("\n".join(observation_lines))

    relation_lines = [f"## {RELATIONS_HEADING}"]
    if entity.relations:
        relation_lines.append("")
        relation_lines.extend(f"- {format_relation(link)}" for link in entity.relations)
    parts.append("\n".join(relation_lines))

    for block in entity.extra_sections:
        if block.strip():
            parts.append(block.strip("\n"))

    return "\n\n".join(parts) + "\n"


def render_entity(entity: Entity) -> str:
    """Render a full markdown document, frontmatter included."""
    metadata: dict[str, Any] = dict(entity.properties)
    metadata["entityType"] = entity.entity_type
    if entity.created:
        metadata["created"] = entity.created.isoformat()
    if entity.updated:
        metadata["updated"] = entity.updated.isoformat()

    post = frontmatter.Post(render_body(entity))
    post.metadata.update(metadata)
    return frontmatter.dumps(post).rstrip("\n") + "\n"


def _split_sections(body: str) -> tuple[list[str], list[tuple[int, str, list[str]]]]:
    """
    Split a body into lead lines and heading sections.

    Returns (lead_lines, [(level, heading_line, body_lines)]). The first
    H1 before any other heading is the title and is dropped. Headings
    inside fenced code blocks are not section boundaries.
    """
    lead: list[str] = []
    sections: list[tuple[int, str, list[str]]] = []
    title_seen = False
    in_fence = False

    for line in body.splitlines():
        if line.lstrip().startswith("```"):
            in_fence = not in_fence
        match = None if in_fence else _HEADING_RE.match(line)
        if match:
            level = len(match.group(1))
            if level == 1 and not title_seen and not sections:
                title_seen = True
                continue
            sections.append((level, line, []))
        elif sections:
            sections[-1][2].append(line)
        else:
            lead.append(line)

    return lead, sections


def _parse_observation_lines(lines: list[str]) -> list[str]:
    observations = []
    for line in lines:
        text = line.strip()
        if not text:
            continue
        text = _BULLET_RE.sub("", text, count=1).strip()
        if not text or text.startswith("**"):
            continue
        observations.append(_unescape_observation(text))
    return observations


def _parse_relation_lines(lines: list[str]) -> list[RelationLink]:
    relations = []
    for target, rel_type in parse_wikilinks("\n".join(lines)):
        relations.append(RelationLink(target=target, type=rel_type))
    return relations


def _parse_bold_metadata(lines: list[str]) -> tuple[dict[str, str], list[str]]:
    """Pull `**Key:** value` lines out of free text."""
    found: dict[str, str] = {}
    remaining = []
    for line in lines:
        match = _BOLD_META_RE.match(line.strip())
        if match:
            key = match.group(1).strip().lower().replace(" ", "")
            found[key] = match.group(2).strip()
        else:
            remaining.append(line)
    return found, remaining


def parse_entity(text: str, name: str) -> Entity:
    """
    Parse a markdown document into an Entity.

    The entity name always comes from the filename stem, never the
    document heading.
    """
    try:
        post = frontmatter.loads(text)
    except (yaml.YAMLError, ValueError, TypeError) as e:
        raise ParseFailureError(f"Invalid frontmatter in {name}: {e}") from e

    metadata = dict(post.metadata)
    lead, sections = _split_sections(post.content)
    bold_meta, lead = _parse_bold_metadata(lead)

    observations: list[str] = []
    relations: list[RelationLink] = []
    extra_sections: list[str] = []

    for level, heading_line, body_lines in sections:
        heading = _HEADING_RE.match(heading_line).group(2).strip().lower()
        if level == 2 and heading == OBSERVATIONS_HEADING.lower():
            observations.extend(_parse_observation_lines(body_lines))
        elif level == 2 and heading == RELATIONS_HEADING.lower():
            relations.extend(_parse_relation_lines(body_lines))
        else:
            extra_sections.append("\n".join([heading_line, *body_lines]).strip("\n"))

    entity_type = next((metadata[k] for k in _TYPE_KEYS if metadata.get(k)), None)
    if entity_type is None:
        entity_type = bold_meta.get("type") or bold_meta.get("entitytype") or ""

    created = parse_timestamp(metadata.get("created") or bold_meta.get("created"))
    updated = parse_timestamp(metadata.get("updated") or bold_meta.get("updated"))

    return Entity(
        name=name,
        entity_type=str(entity_type),
        observations=observations,
        relations=relations,
        created=created,
        updated=updated,
        preamble="\n".join(lead).strip("\n"),
        extra_sections=extra_sections,
        properties={k: v for k, v in metadata.items() if k not in _KNOWN_KEYS},
    )
