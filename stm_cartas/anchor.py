import numpy as np
from typing import List, Dict, Tuple
from scipy import sparse
from scipy.optimize import nnls

from .errors import ConfigurationError

"""
Anchor words initializer (the "Spectral" initialization) following the
separability-based approach of Arora et al. 2013:
- Build the word co-occurrence (gram) matrix Q and row-normalize it
- Pick K anchors with the Successive Projections Algorithm (SPA)
- Recover each word's topic mixture by nonnegative least squares against the
  anchor rows, then Bayes-flip into topic-word distributions
"""


def sparse_dtm(dtm: List[Dict[int, int]], V: int) -> sparse.csr_matrix:
    rows, cols, vals = [], [], []
    for d, counts in enumerate(dtm):
        for v, c in counts.items():
            rows.append(d)
            cols.append(v)
            vals.append(c)
    return sparse.csr_matrix((vals, (rows, cols)), shape=(len(dtm), V), dtype=np.float64)


class AnchorInitializer:
    def __init__(self, K: int, vocab_size: int):
        self.K = K
        self.V = vocab_size

    @staticmethod
    def build_cooccurrence(dtm: List[Dict[int, int]], V: int) -> Tuple[np.ndarray, np.ndarray]:
        # Q = sum_d (c_d c_d^T - diag(c_d)) / (N_d (N_d - 1)); docs with fewer than 2 tokens add nothing
        C = sparse_dtm(dtm, V)
        N = np.asarray(C.sum(axis=1)).ravel()
        w = np.zeros_like(N)
        ok = N > 1
        w[ok] = 1.0 / (N[ok] * (N[ok] - 1))
        Cw = sparse.diags(w) @ C
        Q = (C.T @ Cw).toarray()
        Q -= np.diag(np.asarray(Cw.sum(axis=0)).ravel())
        Q = np.maximum(Q, 0.0)
        total = Q.sum()
        if total > 0:
            Q /= total
        row_sums = Q.sum(axis=1)
        safe = np.where(row_sums == 0, 1.0, row_sums)
        Qbar = Q / safe[:, None]
        return Qbar, row_sums

    @staticmethod
    def successive_projections(Q: np.ndarray, K: int) -> List[int]:
        # pick rows with largest norm after projecting out the anchors found so far
        anchors: List[int] = []
        R = Q.copy()
        for _ in range(K):
            norms = np.linalg.norm(R, axis=1)
            norms[anchors] = -np.inf
            j = int(np.argmax(norms))
            anchors.append(j)
            rj = R[j].copy()
            denom = float(rj @ rj)
            if denom <= 1e-12:
                continue
            R = R - np.outer(R @ rj / denom, rj)
        return anchors

    @staticmethod
    def recover_topics(Qbar: np.ndarray, row_sums: np.ndarray, anchors: List[int]) -> np.ndarray:
        K = len(anchors)
        V = Qbar.shape[0]
        A = Qbar[anchors, :]      # K x V
        W = np.zeros((V, K))      # p(topic | word)
        for v in range(V):
            if v in anchors:
                W[v, anchors.index(v)] = 1.0
                continue
            w, _ = nnls(A.T, Qbar[v])
            s = w.sum()
            W[v] = w / s if s > 1e-12 else np.ones(K) / K
        # p(word, topic) = p(topic | word) p(word)
        joint = W * row_sums[:, None]
        topics = np.maximum(joint.T, 1e-12)
        return topics / topics.sum(axis=1, keepdims=True)

    def initialize(self, dtm: List[Dict[int, int]]) -> Tuple[np.ndarray, List[int]]:
        if self.K > self.V:
            raise ConfigurationError(f'Spectral initialization needs K <= vocabulary size ({self.K} > {self.V})')
        Qbar, row_sums = self.build_cooccurrence(dtm, self.V)
        anchors = self.successive_projections(Qbar, self.K)
        beta0 = self.recover_topics(Qbar, row_sums, anchors)  # K x V
        return beta0, anchors


def lda_initialize(dtm: List[Dict[int, int]], V: int, K: int, seed: int = 0,
                   max_iter: int = 50) -> Tuple[np.ndarray, np.ndarray]:
    """Short LDA run; returns beta0 (K x V) and initial eta (D x K-1)."""
    from sklearn.decomposition import LatentDirichletAllocation
    C = sparse_dtm(dtm, V)
    lda = LatentDirichletAllocation(n_components=K, max_iter=max_iter, random_state=seed,
                                    learning_method='batch')
    theta = lda.fit_transform(C)
    H = np.maximum(lda.components_, 1e-12)
    beta0 = H / H.sum(axis=1, keepdims=True)
    theta = np.maximum(theta, 1e-12)
    eta0 = np.log(theta[:, :-1]) - np.log(theta[:, -1:])
    return beta0, eta0


def random_initialize(V: int, K: int, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    beta0 = np.maximum(rng.gamma(0.1, size=(K, V)), 1e-12)
    return beta0 / beta0.sum(axis=1, keepdims=True)


def initialize_beta(init_type: str, dtm: List[Dict[int, int]], V: int, K: int,
                    seed: int = 0) -> Tuple[np.ndarray, np.ndarray]:
    D = len(dtm)
    if init_type == 'Spectral':
        beta0, _ = AnchorInitializer(K, V).initialize(dtm)
        return beta0, np.zeros((D, K - 1))
    if init_type == 'LDA':
        return lda_initialize(dtm, V, K, seed=seed)
    if init_type == 'Random':
        return random_initialize(V, K, seed=seed), np.zeros((D, K - 1))
    raise ConfigurationError(f'unknown init_type {init_type!r}')
