import numpy as np
import pandas as pd
from dataclasses import dataclass, replace
from typing import Dict, Optional, Sequence
from scipy.stats import rankdata

from .config import ModelConfig
from .em import fit_stm
from .errors import ConfigurationError
from .model import STMModel
from .text import PreparedCorpus


@dataclass
class HeldoutSet:
    corpus: PreparedCorpus                    # training documents with held-out tokens removed
    missing: Dict[int, Dict[int, int]]        # doc index -> held-out counts


def make_heldout(corpus: PreparedCorpus, N: float = 0.1, proportion: float = 0.5,
                 seed: int = 42) -> HeldoutSet:
    """Remove `proportion` of the tokens from a random `N` share of documents (document completion)."""
    rng = np.random.default_rng(seed)
    D = len(corpus.documents)
    lengths = np.array([sum(c.values()) for c in corpus.documents])
    eligible = np.flatnonzero(lengths > 1)
    n_hold = min(len(eligible), max(1, int(np.floor(D * N))))
    if n_hold == 0:
        raise ConfigurationError('no document has enough tokens for a held-out set')
    chosen = rng.choice(eligible, size=n_hold, replace=False)
    docs = [dict(c) for c in corpus.documents]
    missing: Dict[int, Dict[int, int]] = {}
    for d in chosen:
        tokens = np.repeat(np.fromiter(docs[d].keys(), dtype=np.int64),
                           np.fromiter(docs[d].values(), dtype=np.int64))
        n_out = max(1, int(np.floor(len(tokens) * proportion)))
        out = rng.choice(len(tokens), size=n_out, replace=False)
        held: Dict[int, int] = {}
        for v in tokens[out]:
            held[int(v)] = held.get(int(v), 0) + 1
        for v, c in held.items():
            docs[d][v] -= c
            if docs[d][v] == 0:
                del docs[d][v]
        missing[int(d)] = held
    train = replace(corpus, documents=docs)
    return HeldoutSet(corpus=train, missing=missing)


def eval_heldout(model: STMModel, missing: Dict[int, Dict[int, int]]) -> float:
    """Mean over held-out documents of the per-token log-likelihood of the removed words."""
    theta = model.theta
    per_doc = []
    for d, held in missing.items():
        words = np.fromiter(held.keys(), dtype=np.int64)
        counts = np.fromiter(held.values(), dtype=np.float64)
        probs = theta[d] @ model.beta[:, words]
        per_doc.append(float(counts @ np.log(np.maximum(probs, 1e-300)) / counts.sum()))
    return float(np.mean(per_doc))


def semantic_coherence(model: STMModel, documents: Sequence[Dict[int, int]], M: int = 10) -> np.ndarray:
    """UMass-style coherence of the top M words of each topic."""
    M = min(M, model.V)
    top = [np.argsort(model.beta[k])[::-1][:M] for k in range(model.K)]
    needed = sorted({int(v) for t in top for v in t})
    pos = {v: i for i, v in enumerate(needed)}
    B = np.zeros((len(documents), len(needed)))
    for d, counts in enumerate(documents):
        for v in counts:
            if v in pos:
                B[d, pos[v]] = 1.0
    co = B.T @ B
    out = np.zeros(model.K)
    for k, words in enumerate(top):
        idx = [pos[int(v)] for v in words]
        score = 0.0
        for i in range(1, len(idx)):
            for j in range(i):
                score += np.log(co[idx[j], idx[i]] + 0.01) - np.log(co[idx[j], idx[j]] + 0.01)
        out[k] = score
    return out


def exclusivity(model: STMModel, M: int = 10, frexw: float = 0.7) -> np.ndarray:
    beta = model.beta.T                    # V x K
    excl = beta / beta.sum(axis=1, keepdims=True)
    V = beta.shape[0]
    ex = np.column_stack([rankdata(excl[:, k]) / V for k in range(model.K)])
    fr = np.column_stack([rankdata(beta[:, k]) / V for k in range(model.K)])
    frex = 1.0 / (frexw / ex + (1 - frexw) / fr)
    M = min(M, V)
    return np.array([frex[np.argsort(beta[:, k])[::-1][:M], k].sum() for k in range(model.K)])


def search_k(corpus: PreparedCorpus, ks: Sequence[int], config: ModelConfig,
             prevalence: Optional[str] = None, heldout_seed: int = 42,
             verbose: bool = False) -> pd.DataFrame:
    """Fit one model per K on a document-completion split and collect diagnostics.

    `prevalence` overrides the formula of `config` for the sweep.
    """
    if not ks:
        raise ConfigurationError('search_k needs at least one K')
    if prevalence is not None:
        config = replace(config, prevalence=prevalence)
    held = make_heldout(corpus, seed=heldout_seed)
    results = []
    for K in ks:
        if verbose:
            print(f'Fitting K={K}...')
        model = fit_stm(held.corpus, replace(config, K=int(K)), verbose=False)
        results.append({
            'K': int(K),
            'bound': model.bound_history[-1],
            'heldout': eval_heldout(model, held.missing),
            'semcoh': float(semantic_coherence(model, held.corpus.documents).mean()),
            'exclusivity': float(exclusivity(model).mean()),
            'em_its': len(model.bound_history),
        })
    return pd.DataFrame(results)
