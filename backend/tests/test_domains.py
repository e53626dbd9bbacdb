"""Tests for knowledge-domain detection."""

import pytest

from classroom_rag.retrieval.domains import detect_domain, domain_scores, fold, title_keywords


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Séance d'EPS : échauffement et athlétisme", "eps"),
        ("Calcul mental et fractions au CM2", "mathematiques"),
        ("La photosynthèse expliquée en SVT", "svt"),
        ("Fiche de conjugaison et d'orthographe", "francais"),
        ("La Révolution française en histoire-géographie", "histoire_geographie"),
        ("Programmation Scratch en technologie", "technologie"),
        ("Lesson plan: fractions and geometry", "mathematiques"),
    ],
)
def test_detect_domain(text: str, expected: str) -> None:
    assert detect_domain(text) == expected


def test_no_keyword_means_no_domain() -> None:
    assert detect_domain("Compte rendu de la réunion de rentrée") is None
    assert domain_scores("") == {}


def test_keywords_match_whole_words_only() -> None:
    # "mathematiques" is not "math" plus a suffix, and "sportif" is its own keyword.
    assert domain_scores("emathique") == {}
    assert detect_domain("un élève sportif") == "eps"


def test_ties_follow_table_order() -> None:
    assert detect_domain("sport et calcul") == "eps"


def test_fold_strips_accents_and_separators() -> None:
    assert fold("Éducation_Physique-et/Sportive") == "education physique et sportive"


def test_title_keywords() -> None:
    assert title_keywords("Séquence_fractions-CM2 v2 final.pdf") == ["sequence", "fractions", "cm2"]
    assert len(title_keywords("un deux trois quatre cinq six sept huit neuf dix onze", limit=8)) == 8
