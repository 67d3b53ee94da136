"""
Raid catalog parsing.

The scheduled rotation is kept in a plain text file, one raid per line:

    seed-species-starCount-storyProgress
    0xABCDEF0123456789-Pikachu-5-6
    # comments and blank lines are ignored

The seed is hexadecimal (with or without 0x). Species is passed through as
text for the legalizer to interpret and may itself contain hyphens.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from ...exceptions import CatalogFormatError

MAX_STARS = 7
MAX_STORY_PROGRESS = 6


@dataclass(frozen=True)
class RaidDefinition:
    """One catalog entry."""
    seed: int
    species: str
    stars: int
    story_progress: int

    def __str__(self) -> str:
        return f"{self.seed:016X}-{self.species}-{self.stars}-{self.story_progress}"


def parse_line(line: str, line_number: int = 1) -> RaidDefinition:
    """
    Parse one catalog record.

    Raises:
        CatalogFormatError: with the line number and the reason.
    """
    parts = line.strip().split("-")
    if len(parts) < 4:
        raise CatalogFormatError(line_number, line, "expected seed-species-stars-progress")
    # Species names may contain hyphens (Ho-Oh, Porygon-Z)
    seed_text, stars_text, progress_text = parts[0].strip(), parts[-2].strip(), parts[-1].strip()
    species = "-".join(parts[1:-2]).strip()

    try:
        seed = int(seed_text, 16)
    except ValueError:
        raise CatalogFormatError(line_number, line, "seed is not hexadecimal") from None
    if not 0 <= seed < (1 << 64):
        raise CatalogFormatError(line_number, line, "seed does not fit in 64 bits")
    if not species:
        raise CatalogFormatError(line_number, line, "species is empty")

    try:
        stars = int(stars_text)
        progress = int(progress_text)
    except ValueError:
        raise CatalogFormatError(line_number, line, "star count and progress must be integers") from None
    if not 1 <= stars <= MAX_STARS:
        raise CatalogFormatError(line_number, line, f"star count must be 1-{MAX_STARS}")
    if not 0 <= progress <= MAX_STORY_PROGRESS:
        raise CatalogFormatError(line_number, line, f"story progress must be 0-{MAX_STORY_PROGRESS}")

    return RaidDefinition(seed=seed, species=species, stars=stars, story_progress=progress)


def parse_catalog(lines: Iterable[str]) -> list[RaidDefinition]:
    definitions = []
    for number, line in enumerate(lines, start=1):
        text = line.strip()
        if not text or text.startswith("#"):
            continue
        definitions.append(parse_line(text, number))
    return definitions


def load_catalog(path: Path) -> list[RaidDefinition]:
    with open(path, "r", encoding="utf-8") as f:
        return parse_catalog(f)
