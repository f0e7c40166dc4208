import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .config import TextConfig, PruneConfig
from .errors import ConfigurationError, DataError

# NLTK resources are downloaded lazily so importing the package never needs network


def _ensure_nltk_stopwords():
    import nltk
    try:
        nltk.data.find('corpora/stopwords')
    except LookupError:
        nltk.download('stopwords', quiet=True)


def language_stopwords(language: str) -> List[str]:
    _ensure_nltk_stopwords()
    from nltk.corpus import stopwords
    return stopwords.words(language)


@dataclass
class ProcessedCorpus:
    # documents[i] is a sparse count vector {vocab index: count} aligned with meta.iloc[i]
    documents: List[Dict[int, int]]
    vocab: List[str]
    meta: pd.DataFrame
    docs_removed: List[int] = field(default_factory=list)

    def __post_init__(self):
        check_alignment(self.documents, self.meta)


@dataclass
class PreparedCorpus(ProcessedCorpus):
    words_removed: List[str] = field(default_factory=list)
    tokens_removed: int = 0
    wordcounts: Optional[np.ndarray] = None


def check_alignment(documents, meta) -> None:
    if len(documents) != len(meta):
        raise DataError(f'{len(documents)} documents but {len(meta)} metadata rows')


def document_frequency(documents: Sequence[Dict[int, int]], V: int) -> np.ndarray:
    df = np.zeros(V, dtype=np.int64)
    for counts in documents:
        for v in counts:
            df[v] += 1
    return df


class TextPreprocessor:
    """lowercase -> punctuation -> digits -> stopwords -> stem, then count terms per document."""

    punct_re = re.compile(r'[^\w\s]|_')
    digit_re = re.compile(r'\d+')

    def __init__(self, config: TextConfig):
        self.config = config
        self._stemmer = None
        self._stops = None

    @property
    def stopwords(self) -> set:
        if self._stops is None:
            cfg = self.config
            stops = set()
            if cfg.remove_stopwords:
                base = cfg.stopwords if cfg.stopwords is not None else language_stopwords(cfg.language)
                stops.update(base)
            custom = cfg.custom_stopwords or []
            stops.update(w.lower() if cfg.lowercase else w for w in custom)
            self._stops = stops
        return self._stops

    @property
    def stemmer(self):
        if self._stemmer is None and self.config.stem:
            from nltk.stem.snowball import SnowballStemmer
            if self.config.language not in SnowballStemmer.languages:
                raise ConfigurationError(f'no Snowball stemmer for language {self.config.language!r}')
            self._stemmer = SnowballStemmer(self.config.language)
        return self._stemmer

    def tokenize(self, text: str) -> List[str]:
        cfg = self.config
        if not isinstance(text, str):
            return []
        s = text.lower() if cfg.lowercase else text
        if cfg.remove_punctuation:
            s = self.punct_re.sub('', s)
        if cfg.remove_numbers:
            s = self.digit_re.sub('', s)
        tokens = [t for t in re.split(r'\s+', s) if t]
        stops = self.stopwords
        tokens = [t for t in tokens if t not in stops]
        if cfg.stem:
            stemmer = self.stemmer
            tokens = [stemmer.stem(t) for t in tokens]
        return [t for t in tokens if len(t) >= cfg.min_word_length]

    def process(self, texts: Sequence[str], meta: pd.DataFrame) -> ProcessedCorpus:
        if len(texts) != len(meta):
            raise DataError(f'{len(texts)} texts but {len(meta)} metadata rows')
        token_lists = [self.tokenize(t) for t in texts]
        keep = [i for i, toks in enumerate(token_lists) if toks]
        removed = [i for i, toks in enumerate(token_lists) if not toks]
        vocab = sorted({t for i in keep for t in token_lists[i]})
        index = {w: i for i, w in enumerate(vocab)}
        documents: List[Dict[int, int]] = []
        for i in keep:
            counts: Dict[int, int] = {}
            for t in token_lists[i]:
                v = index[t]
                counts[v] = counts.get(v, 0) + 1
            documents.append(counts)
        meta_kept = meta.iloc[keep].reset_index(drop=True)
        return ProcessedCorpus(documents=documents, vocab=vocab, meta=meta_kept, docs_removed=removed)


class VocabularyPruner:
    def __init__(self, config: PruneConfig):
        if not isinstance(config.lower_thresh, (int, np.integer)) or config.lower_thresh < 1:
            raise ConfigurationError(f'lower_thresh must be an integer >= 1, got {config.lower_thresh!r}')
        if config.upper_thresh is not None and config.upper_thresh < config.lower_thresh:
            raise ConfigurationError('upper_thresh must be >= lower_thresh')
        self.config = config

    def prune(self, corpus: ProcessedCorpus) -> PreparedCorpus:
        D, V = len(corpus.documents), len(corpus.vocab)
        lower = self.config.lower_thresh
        upper = self.config.upper_thresh
        if lower >= D:
            raise ConfigurationError(
                f'lower_thresh={lower} must be smaller than the number of documents ({D})')
        df = document_frequency(corpus.documents, V)
        keep_word = df >= lower
        if upper is not None:
            keep_word &= df <= upper
        if not keep_word.any():
            raise ConfigurationError(f'no term appears in at least {lower} documents; vocabulary is empty')
        new_index = -np.ones(V, dtype=np.int64)
        new_index[keep_word] = np.arange(int(keep_word.sum()))
        vocab = [w for w, k in zip(corpus.vocab, keep_word) if k]
        words_removed = [w for w, k in zip(corpus.vocab, keep_word) if not k]

        documents: List[Dict[int, int]] = []
        keep_doc: List[int] = []
        docs_removed: List[int] = []
        tokens_removed = 0
        for d, counts in enumerate(corpus.documents):
            new_counts = {}
            for v, c in counts.items():
                nv = new_index[v]
                if nv >= 0:
                    new_counts[int(nv)] = c
                else:
                    tokens_removed += c
            if new_counts:
                documents.append(new_counts)
                keep_doc.append(d)
            else:
                docs_removed.append(d)
        if not documents:
            raise ConfigurationError('every document is empty after pruning')
        meta = corpus.meta.iloc[keep_doc].reset_index(drop=True)
        wordcounts = document_frequency(documents, len(vocab))
        return PreparedCorpus(documents=documents, vocab=vocab, meta=meta,
                              docs_removed=docs_removed, words_removed=words_removed,
                              tokens_removed=tokens_removed, wordcounts=wordcounts)


def to_dense(documents: Sequence[Dict[int, int]], V: int) -> np.ndarray:
    dtm = np.zeros((len(documents), V), dtype=np.float64)
    for d, counts in enumerate(documents):
        for v, c in counts.items():
            dtm[d, v] = c
    return dtm
