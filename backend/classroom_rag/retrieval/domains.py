"""Knowledge-domain detection for teaching material.

A document or a question is assigned the school subject whose keywords it
mentions most often. Matching is accent and case insensitive and works on
French and English vocabulary. No match means no domain, and retrieval then
searches the whole reachable corpus.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Mapping

DOMAIN_KEYWORDS: Mapping[str, tuple[str, ...]] = {
    "eps": (
        "eps", "education physique", "education physique et sportive", "sport", "sportif", "sportive",
        "motricite", "motrice", "athletisme", "natation", "gymnastique", "acrosport", "badminton",
        "handball", "basket", "basketball", "football", "volley", "volleyball", "endurance",
        "echauffement", "physical education",
    ),
    "mathematiques": (
        "mathematiques", "maths", "math", "calcul", "calcul mental", "geometrie", "algebre", "fraction",
        "fractions", "equation", "equations", "numeration", "probabilites", "statistiques",
        "mathematics", "arithmetic", "geometry", "algebra",
    ),
    "svt": (
        "svt", "sciences de la vie", "sciences de la vie et de la terre", "biologie", "ecologie",
        "geologie", "cellule", "photosynthese", "biology", "ecosystem",
    ),
    "physique_chimie": (
        "physique", "chimie", "physique chimie", "electricite", "atome", "molecule", "chemistry",
        "physics",
    ),
    "francais": (
        "francais", "grammaire", "orthographe", "conjugaison", "litterature", "poesie", "vocabulaire",
        "redaction", "dictee", "production d ecrit", "grammar", "spelling",
    ),
    "langues": (
        "anglais", "espagnol", "allemand", "italien", "langues vivantes", "langue vivante", "lv1", "lv2",
        "cecrl", "english lesson", "spanish", "german", "foreign language",
    ),
    "histoire_geographie": (
        "histoire", "geographie", "histoire geographie", "hist geo", "chronologie", "revolution francaise",
        "guerre mondiale", "moyen age", "antiquite", "history", "geography",
    ),
    "arts_plastiques": (
        "arts plastiques", "art plastique", "dessin", "peinture", "sculpture", "visual arts",
    ),
    "musique": (
        "musique", "education musicale", "chorale", "chant", "instrument", "music",
    ),
    "technologie": (
        "technologie", "programmation", "robotique", "scratch", "algorithme", "algorithmique",
        "technology", "coding",
    ),
    "emc": (
        "emc", "enseignement moral et civique", "enseignement moral", "civique", "citoyennete", "laicite",
        "civics", "citizenship",
    ),
}

STOPWORDS = frozenset(
    """
    a au aux avec ce ces dans de des du en et la le les leur un une pour par sur pas plus ou
    est sont the of and to in for on with an is are by at from as que qui quoi comment quel
    quelle quels quelles doc docx pdf txt v1 v2 final copie
    """.split()
)

_SEPARATORS_RE = re.compile(r"[-_'’/.]+")
_SPACES_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"[a-z0-9]+")


def fold(text: str) -> str:
    """Lowercase, strip accents and turn separators into spaces."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _SPACES_RE.sub(" ", _SEPARATORS_RE.sub(" ", stripped)).strip()


def _compile(keywords: Mapping[str, tuple[str, ...]]) -> dict[str, re.Pattern[str]]:
    patterns: dict[str, re.Pattern[str]] = {}
    for domain, words in keywords.items():
        alternatives = sorted({fold(word) for word in words}, key=len, reverse=True)
        patterns[domain] = re.compile(r"\b(?:" + "|".join(re.escape(word) for word in alternatives) + r")\b")
    return patterns


_PATTERNS = _compile(DOMAIN_KEYWORDS)


def domain_scores(text: str) -> dict[str, int]:
    folded = fold(text)
    scores: dict[str, int] = {}
    for domain, pattern in _PATTERNS.items():
        hits = len(pattern.findall(folded))
        if hits:
            scores[domain] = hits
    return scores


def detect_domain(text: str) -> str | None:
    """Return the best matching domain label, or ``None`` when nothing matches.

    Ties go to the domain listed first in ``DOMAIN_KEYWORDS``.
    """
    scores = domain_scores(text)
    if not scores:
        return None
    best = max(scores.values())
    for domain in DOMAIN_KEYWORDS:
        if scores.get(domain) == best:
            return domain
    return None


def title_keywords(title: str, limit: int = 8) -> list[str]:
    """Distinct meaningful words of a document title, in order."""
    stem = re.sub(r"\.[A-Za-z0-9]{1,5}$", "", title)
    seen: list[str] = []
    for word in _WORD_RE.findall(fold(stem)):
        if len(word) < 3 or word in STOPWORDS or word.isdigit() or word in seen:
            continue
        seen.append(word)
        if len(seen) >= limit:
            break
    return seen


__all__ = ["DOMAIN_KEYWORDS", "detect_domain", "domain_scores", "fold", "title_keywords"]
