"""
Price Sweep - Query Planner

Builds marketplace search strings for a catalog item: one primary query and a
de-duplicated cascade of broader fallbacks. Every string is whitespace
collapsed and capped at MAX_QUERY_LENGTH characters.
"""

from __future__ import annotations

import re
import unicodedata

from pricesweep.config import GAME_ALIASES, MAX_QUERY_LENGTH, Game
from pricesweep.models.catalog import CatalogItem

# Domain glyphs that NFKD does not reduce to ASCII (e.g. delta species)
SYMBOL_MAP: dict[str, str] = {
    "δ": "delta",
    "Δ": "delta",
}

_WHITESPACE = re.compile(r"\s+")
_POKEMON_ID = re.compile(r"^([A-Za-z0-9]+)[-:](.+)$")  # xy5-1, sv4pt5-148, base6:67


def trim_query(text: str | None) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()[:MAX_QUERY_LENGTH]


def to_ascii(text: str) -> str:
    """Strip diacritics via NFKD after applying the symbol table."""
    for glyph, replacement in SYMBOL_MAP.items():
        text = text.replace(glyph, replacement)
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def game_aliases(game: Game) -> tuple[str, ...]:
    return GAME_ALIASES.get(game, ("Trading Card Game",))


def parse_pokemon_id(card_id: str) -> tuple[str | None, str | None]:
    match = _POKEMON_ID.match(card_id or "")
    if not match:
        return None, None
    return match.group(1), match.group(2)


def _set_code(game: Game, item: CatalogItem) -> str | None:
    # YGO prints code+number, e.g. LOB-EN001
    if game is Game.YGO and item.set_code and item.set_num:
        return f"{item.set_code}-{item.set_num}"
    return item.set_code


def _join(*parts: str | None) -> str:
    return trim_query(" ".join(p for p in parts if p))


def primary_query(game: Game, item: CatalogItem) -> str:
    """name + set code (or set name) + number + first alias."""
    set_code = _set_code(game, item)
    number = item.number or item.collector_number

    if game is Game.POKEMON and (not set_code or not number):
        parsed_set, parsed_number = parse_pokemon_id(item.id)
        set_code = set_code or parsed_set
        number = number or parsed_number

    alias = game_aliases(game)[0]
    return _join(item.name, set_code or item.set_name, number, alias)


def fallback_queries(
    game: Game,
    item: CatalogItem,
    expand_aliases: bool = True,
) -> list[str]:
    """
    Broader queries tried when the primary ones yield too few samples.

    (name + set + alias) for each alias, then (name + alias) for each alias.
    Without alias expansion only the first alias is used.
    """
    aliases = game_aliases(game)
    if not expand_aliases:
        aliases = aliases[:1]
    set_part = _set_code(game, item) or item.set_name

    with_set = [_join(item.name, set_part, alias) for alias in aliases]
    name_only = [_join(item.name, alias) for alias in aliases]

    return list(dict.fromkeys(q for q in with_set + name_only if q))


def primary_variants(query: str, ascii_first: bool) -> list[str]:
    """ASCII-normalised variant first (when different), then the literal query."""
    if not ascii_first:
        return [query]
    ascii_query = trim_query(to_ascii(query))
    if ascii_query and ascii_query != query:
        return [ascii_query, query]
    return [query]


def plan_queries(
    game: Game,
    item: CatalogItem,
    ascii_first: bool = True,
    expand_aliases: bool = True,
) -> tuple[list[str], list[str]]:
    """
    Full search plan for one item: (primary queries, fallback queries).

    Fallbacks never repeat a primary query; each fallback is preceded by its
    ASCII variant when ascii_first is on.
    """
    primaries = primary_variants(primary_query(game, item), ascii_first)
    tried = set(primaries)
    fallbacks: list[str] = []

    for query in fallback_queries(game, item, expand_aliases):
        for variant in primary_variants(query, ascii_first):
            if variant in tried:
                continue
            tried.add(variant)
            fallbacks.append(variant)

    return primaries, fallbacks
