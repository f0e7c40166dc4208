import warnings
import numpy as np
from typing import List, Dict, Optional
from sklearn.exceptions import ConvergenceWarning

from .anchor import initialize_beta
from .config import ModelConfig
from .design import build_design_matrix
from .errors import ConfigurationError, ModelError
from .model import STMModel
from .text import PreparedCorpus, check_alignment
from .variational import VariationalEstimator, make_pd


class EMRunner:
    def __init__(self, model: STMModel, max_em_its: int = 75, emtol: float = 1e-5,
                 verbose: bool = False):
        self.m = model
        self.max_em_its = max_em_its
        self.emtol = emtol
        self.verbose = verbose
        self.ve = VariationalEstimator(model)

    def e_step(self, dtm: List[Dict[int, int]]):
        m = self.m
        siginv = m.sigma_inv()
        logdet_sigma = np.linalg.slogdet(m.Sigma)[1]
        mu = m.mu
        beta_ss = np.zeros((m.K, m.V))
        bound = 0.0
        for d, counts in enumerate(dtm):
            eta, nu, words, ss, b = self.ve.e_step_doc(counts, mu[d], siginv, logdet_sigma, m.eta[d])
            m.eta[d] = eta
            m.nu[d] = nu
            beta_ss[:, words] += ss
            bound += b
        return beta_ss, bound

    def m_step(self, beta_ss: np.ndarray) -> None:
        m = self.m
        # beta: normalized expected counts
        beta = np.maximum(beta_ss, 1e-12)
        m.beta = beta / beta.sum(axis=1, keepdims=True)
        # Gamma: least squares of eta on the design, small ridge for rank-deficient designs
        X = m.X
        XtX = X.T @ X
        try:
            m.Gamma = np.linalg.solve(XtX + 1e-8 * np.eye(XtX.shape[0]), X.T @ m.eta)
        except np.linalg.LinAlgError:
            m.Gamma = np.linalg.lstsq(X, m.eta, rcond=None)[0]
        # Sigma: average posterior covariance plus residual outer products
        resid = m.eta - X @ m.Gamma
        S = np.sum(m.nu, axis=0) + resid.T @ resid
        m.Sigma = make_pd(S / m.D)

    def run(self, dtm: List[Dict[int, int]]) -> STMModel:
        m = self.m
        last = None
        for it in range(self.max_em_its):
            beta_ss, bound = self.e_step(dtm)
            self.m_step(beta_ss)
            if not np.isfinite(bound) or not np.all(np.isfinite(m.beta)):
                raise ModelError(f'non-finite approximate bound at EM iteration {it + 1}')
            m.bound_history.append(float(bound))
            rel = None if last is None else abs(bound - last) / (abs(last) + 1e-9)
            if self.verbose:
                msg = f'Completed E-Step ({len(dtm)} docs), iteration {it + 1}, bound {bound:.3f}'
                if rel is not None:
                    msg += f' (relative change {rel:.3e})'
                print(msg)
            if rel is not None and rel < self.emtol:
                m.converged = True
                if self.verbose:
                    print(f'Model converged after {it + 1} iterations')
                break
            last = bound
        if not m.converged:
            warnings.warn(f'EM stopped at max_em_its={self.max_em_its} before reaching emtol={self.emtol}',
                          ConvergenceWarning)
        return m


def fit_stm(corpus: PreparedCorpus, config: ModelConfig, verbose: bool = False,
            init_beta: Optional[np.ndarray] = None) -> STMModel:
    """Fit a prevalence STM on a pruned corpus."""
    check_alignment(corpus.documents, corpus.meta)
    K, V = config.K, len(corpus.vocab)
    if not isinstance(K, (int, np.integer)) or K < 2:
        raise ConfigurationError(f'K must be an integer >= 2, got {K!r}')
    if V == 0 or not corpus.documents:
        raise ConfigurationError('cannot fit a topic model on an empty corpus')
    design = build_design_matrix(corpus.meta, config.prevalence)
    token_totals = np.zeros(V)
    for counts in corpus.documents:
        for v, c in counts.items():
            token_totals[v] += c
    model = STMModel(K, corpus.vocab, design, wordcounts=token_totals)
    if init_beta is not None:
        model.beta = init_beta.copy()
    else:
        if verbose:
            print(f'Beginning {config.init_type} initialization...')
        beta0, eta0 = initialize_beta(config.init_type, corpus.documents, V, K, seed=config.seed)
        model.beta = beta0
        model.eta = eta0
    runner = EMRunner(model, max_em_its=config.max_em_its, emtol=config.emtol, verbose=verbose)
    return runner.run(corpus.documents)
