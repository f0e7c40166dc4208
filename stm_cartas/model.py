import numpy as np
import pandas as pd
from typing import Dict, List, Optional, Tuple
from scipy.stats import rankdata

from .design import DesignMatrix


class STMModel:
    """Structural topic model with covariates on topic prevalence.

    eta_d ~ N(x_d Gamma, Sigma) lives in K-1 dimensions; the last topic is the
    reference, so theta_d = softmax([eta_d, 0]).  Topics are multinomials over
    the vocabulary (beta, K x V).
    """

    def __init__(self, K: int, vocab: List[str], design: DesignMatrix,
                 wordcounts: Optional[np.ndarray] = None):
        self.K = K
        self.vocab = list(vocab)
        self.V = len(vocab)
        self.design = design
        self.X = design.values()
        self.D, self.P = self.X.shape
        # Parameters
        self.beta = np.full((K, self.V), 1.0 / self.V)
        self.Gamma = np.zeros((self.P, K - 1))
        self.Sigma = np.diag(np.full(K - 1, 20.0))
        # Per-document variational parameters
        self.eta = np.zeros((self.D, K - 1))
        self.nu = [np.eye(K - 1) for _ in range(self.D)]
        self.bound_history: List[float] = []
        self.converged = False
        self.wordcounts = wordcounts if wordcounts is not None else np.ones(self.V)

    @staticmethod
    def softmax(a: np.ndarray) -> np.ndarray:
        z = a - a.max(axis=-1, keepdims=True)
        e = np.exp(z)
        return e / e.sum(axis=-1, keepdims=True)

    @staticmethod
    def eta_to_theta(eta: np.ndarray) -> np.ndarray:
        pad = np.zeros(eta.shape[:-1] + (1,))
        return STMModel.softmax(np.concatenate([eta, pad], axis=-1))

    @property
    def theta(self) -> np.ndarray:
        return self.eta_to_theta(self.eta)

    @property
    def logbeta(self) -> np.ndarray:
        return np.log(np.maximum(self.beta, 1e-300))

    @property
    def mu(self) -> np.ndarray:
        return self.X @ self.Gamma

    def sigma_inv(self) -> np.ndarray:
        try:
            return np.linalg.inv(self.Sigma)
        except np.linalg.LinAlgError:
            return np.linalg.pinv(self.Sigma)

    # --- per-document objective over eta (words restricted to those in the doc) ---

    def f_objective(self, eta: np.ndarray, words: np.ndarray, counts: np.ndarray,
                    mu_d: np.ndarray, siginv: np.ndarray) -> float:
        theta = self.eta_to_theta(eta)
        S = np.maximum(theta @ self.beta[:, words], 1e-300)
        diff = eta - mu_d
        return float(counts @ np.log(S) - 0.5 * diff @ siginv @ diff)

    def phi_doc(self, eta: np.ndarray, words: np.ndarray) -> np.ndarray:
        # posterior topic responsibility of each word in the doc, K x n_d
        theta = self.eta_to_theta(eta)
        EB = theta[:, None] * self.beta[:, words]
        return EB / np.maximum(EB.sum(axis=0, keepdims=True), 1e-300)

    def grad_objective(self, eta, words, counts, mu_d, siginv) -> np.ndarray:
        theta = self.eta_to_theta(eta)
        phi = self.phi_doc(eta, words)
        N = counts.sum()
        g = phi @ counts - N * theta
        return g[:-1] - siginv @ (eta - mu_d)

    def hessian_objective(self, eta, words, counts, siginv) -> np.ndarray:
        theta = self.eta_to_theta(eta)
        phi = self.phi_doc(eta, words)
        N = counts.sum()
        H = np.diag(phi @ counts) - (phi * counts) @ phi.T
        H -= N * (np.diag(theta) - np.outer(theta, theta))
        return H[:-1, :-1] - siginv

    # --- summaries ---

    def topic_proportions(self) -> np.ndarray:
        """Expected share of the corpus attributable to each topic."""
        return self.theta.mean(axis=0)

    def top_words(self, topn: int = 10) -> List[List[Tuple[str, float]]]:
        out = []
        for k in range(self.K):
            idxs = np.argsort(self.beta[k])[::-1][:topn]
            out.append([(self.vocab[i], float(self.beta[k, i])) for i in idxs])
        return out

    def frex(self, w: float = 0.5) -> np.ndarray:
        # harmonic mean of within-topic frequency rank and exclusivity rank, K x V
        beta = self.beta
        excl = beta / beta.sum(axis=0, keepdims=True)
        fr = np.vstack([rankdata(row, method='max') / self.V for row in beta])
        ex = np.vstack([rankdata(row, method='max') / self.V for row in excl])
        return 1.0 / (w / ex + (1 - w) / fr)

    def label_topics(self, n: int = 7, frexw: float = 0.5) -> Dict[str, List[List[str]]]:
        """Top words per topic under four weightings: prob, frex, lift and score."""
        n = min(n, self.V)
        logbeta = self.logbeta
        wc = np.asarray(self.wordcounts, dtype=np.float64)
        lift = self.beta / np.maximum(wc / wc.sum(), 1e-300)
        score = self.beta * (logbeta - logbeta.mean(axis=0, keepdims=True))
        frex = self.frex(frexw)

        def top(mat):
            return [[self.vocab[i] for i in np.argsort(row)[::-1][:n]] for row in mat]

        return {'prob': top(self.beta), 'frex': top(frex), 'lift': top(lift), 'score': top(score)}

    def summary(self, n: int = 7) -> str:
        labels = self.label_topics(n=n)
        props = self.topic_proportions()
        lines = [f'A topic model with {self.K} topics, {self.D} documents and a {self.V} word dictionary.']
        for k in range(self.K):
            lines.append(f'Topic {k + 1} ({props[k]:.3f}) Top Words:')
            for key, title in (('prob', 'Highest Prob'), ('frex', 'FREX'), ('lift', 'Lift'), ('score', 'Score')):
                lines.append(f'    {title}: ' + ', '.join(labels[key][k]))
        return '\n'.join(lines)

    def theta_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.theta, columns=[f'topic_{k + 1}' for k in range(self.K)])
