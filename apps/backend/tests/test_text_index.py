from core.text_index import (
    MAX_QUERY_LENGTH,
    build_search_vector,
    clean_query,
    fuzzy_matches,
    query_terms,
    rank,
    similarity,
    tokenize,
    trigrams,
    vector_matches,
    word_similarity,
)


def test_tokenize_casefolds_and_splits_on_punctuation():
    assert tokenize("Sub-Inspector (Executive)") == ["sub", "inspector", "executive"]
    assert tokenize(None) == []


def test_clean_query_collapses_and_caps():
    assert clean_query("  staff   nurse ") == "staff nurse"
    assert len(clean_query("x" * 500)) == MAX_QUERY_LENGTH
    assert clean_query(None) == ""


def test_query_terms_drop_stop_words():
    assert query_terms("jobs in Pune") == ["pune"]
    assert query_terms("nurse nurse") == ["nurse"]


def test_query_terms_keep_stop_words_when_nothing_else_left():
    assert query_terms("the") == ["the"]


def test_search_vector_keeps_strongest_weight():
    vector = build_search_vector({
        "title": "Staff Nurse",
        "organisation": "AIIMS",
        "state": "Delhi",
        "qualification": "B.Sc Nursing",
        "description": "Nurse posts in Delhi",
    })
    assert vector["nurse"] == "A"
    assert vector["delhi"] == "B"
    assert vector["nursing"] == "C"
    assert vector["posts"] == "D"


def test_vector_matches_requires_all_terms():
    vector = build_search_vector({"title": "Staff Nurse", "state": "Delhi"})
    assert vector_matches(vector, ["nurse", "delhi"])
    assert not vector_matches(vector, ["nurse", "mumbai"])
    assert not vector_matches(vector, [])


def test_rank_prefers_title_hits():
    title_hit = build_search_vector({"title": "Clerk"})
    description_hit = build_search_vector({"title": "Assistant", "description": "clerk duties"})
    assert rank(title_hit, ["clerk"]) > rank(description_hit, ["clerk"])


def test_trigrams_are_padded_per_word():
    assert trigrams("ab") == {"  a", " ab", "ab "}


def test_similarity_bounds():
    assert similarity("engineer", "engineer") == 1.0
    assert similarity("engineer", "") == 0.0


def test_word_similarity_tolerates_typos():
    assert word_similarity("enginer", "Junior Engineer (Civil)") >= 0.6
    assert word_similarity("enginer", "Staff Nurse") < 0.6


def test_fuzzy_matches_title_or_organisation():
    job = {"title": "Staff Nurse", "organisation": "Central Reserve Police Force"}
    assert fuzzy_matches("nurses", job)
    assert fuzzy_matches("reserv", job)
    assert not fuzzy_matches("teacher", job)
