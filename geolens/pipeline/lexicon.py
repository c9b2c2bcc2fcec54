"""Single-letter stratigraphic prefixes used on French 1/50 000 geological maps."""

from __future__ import annotations

AGE_PREFIX_LEXICON: dict[str, str] = {
    "F": "Quaternaire (alluvions fluviatiles)",
    "C": "Quaternaire (colluvions)",
    "E": "Quaternaire (éboulis)",
    "L": "Quaternaire (lœss et limons)",
    "q": "Quaternaire",
    "p": "Pliocène",
    "m": "Miocène",
    "g": "Oligocène",
    "e": "Éocène",
    "c": "Crétacé supérieur",
    "n": "Crétacé inférieur",
    "j": "Jurassique moyen et supérieur",
    "l": "Lias (Jurassique inférieur)",
    "t": "Trias",
    "r": "Permien",
    "h": "Carbonifère",
    "d": "Dévonien",
    "s": "Silurien",
    "o": "Ordovicien",
    "k": "Cambrien",
    "b": "Briovérien (Protérozoïque)",
}


def period_for_code(code: str | None) -> str | None:
    if not code:
        return None
    stripped = code.strip()
    if not stripped:
        return None
    prefix = stripped[0]
    if prefix in AGE_PREFIX_LEXICON:
        return AGE_PREFIX_LEXICON[prefix]
    # Manual entries are often typed with the wrong case (J9ad for j9ad).
    return AGE_PREFIX_LEXICON.get(prefix.lower())


def render_lexicon() -> str:
    return "\n".join(f'- "{prefix}" = {period}' for prefix, period in AGE_PREFIX_LEXICON.items())
