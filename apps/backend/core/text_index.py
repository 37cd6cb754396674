"""
Lexical and trigram helpers shared by the job stores.

The weights and tokenization mirror what the PostgreSQL store does with
to_tsvector('simple', ...) / setweight / ts_rank and pg_trgm, so the
in-process store ranks and matches the same way.
"""
import re
import unicodedata
from typing import Dict, Iterable, List, Optional, Set

TS_CONFIG = "simple"

# Field -> tsvector weight label. Identity fields outrank prose.
FIELD_WEIGHTS = (
    ("title", "A"),
    ("organisation", "A"),
    ("category", "B"),
    ("state", "B"),
    ("district", "B"),
    ("qualification", "C"),
    ("description", "D"),
)

# ts_rank default weights {D, C, B, A} = {0.1, 0.2, 0.4, 1.0}
WEIGHT_VALUES = {"A": 1.0, "B": 0.4, "C": 0.2, "D": 0.1}

# Dropped from queries only; the 'simple' config keeps them in documents
QUERY_STOP_WORDS = {
    "a", "an", "and", "at", "for", "from", "in", "of", "on", "or", "the", "to", "with",
    "job", "jobs", "vacancy", "vacancies",
}

MAX_QUERY_LENGTH = 200
WORD_SIMILARITY_THRESHOLD = 0.6

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def tokenize(text: Optional[str]) -> List[str]:
    if not text:
        return []
    folded = unicodedata.normalize("NFKC", text).casefold()
    return _TOKEN_RE.findall(folded)


def clean_query(q: Optional[str]) -> str:
    """Trim and cap a free-text query"""
    if not q:
        return ""
    return " ".join(q.split())[:MAX_QUERY_LENGTH]


def query_terms(q: Optional[str]) -> List[str]:
    """
    Terms that must all be present in a row's vector (plainto_tsquery
    semantics). Stop words are removed unless that would empty the query.
    """
    tokens = tokenize(q)
    terms = [t for t in tokens if t not in QUERY_STOP_WORDS]
    terms = terms or tokens
    seen = []
    for term in terms:
        if term not in seen:
            seen.append(term)
    return seen


def build_search_vector(job: Dict) -> Dict[str, str]:
    """
    Build a weighted vector: token -> strongest weight label it appears with.
    """
    vector: Dict[str, str] = {}
    for field, label in FIELD_WEIGHTS:
        for token in tokenize(job.get(field)):
            current = vector.get(token)
            if current is None or WEIGHT_VALUES[label] > WEIGHT_VALUES[current]:
                vector[token] = label
    return vector


def vector_matches(vector: Dict[str, str], terms: Iterable[str]) -> bool:
    terms = list(terms)
    return bool(terms) and all(term in vector for term in terms)


def rank(vector: Dict[str, str], terms: Iterable[str]) -> float:
    return sum(WEIGHT_VALUES[vector[term]] for term in terms if term in vector)


def trigrams(text: Optional[str]) -> Set[str]:
    """pg_trgm style trigrams: each word padded with two leading blanks and one trailing"""
    grams: Set[str] = set()
    for word in re.findall(r"[^\W_]+", unicodedata.normalize("NFKC", text or "").casefold()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return grams


def similarity(a: Optional[str], b: Optional[str]) -> float:
    ta, tb = trigrams(a), trigrams(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


def word_similarity(query: Optional[str], text: Optional[str]) -> float:
    """
    Best similarity between the query and any run of consecutive words in
    text of the same length as the query (approximates pg_trgm's
    word_similarity for typo-tolerant partial matching).
    """
    q_words = re.findall(r"[^\W_]+", (query or "").casefold())
    t_words = re.findall(r"[^\W_]+", (text or "").casefold())
    if not q_words or not t_words:
        return 0.0
    q = " ".join(q_words)
    width = min(len(q_words), len(t_words))
    best = 0.0
    for start in range(len(t_words) - width + 1):
        best = max(best, similarity(q, " ".join(t_words[start:start + width])))
    return best


def fuzzy_matches(query: Optional[str], job: Dict) -> bool:
    return (
        word_similarity(query, job.get("title")) >= WORD_SIMILARITY_THRESHOLD
        or word_similarity(query, job.get("organisation")) >= WORD_SIMILARITY_THRESHOLD
    )
