import numpy as np
from typing import Dict, Tuple
from scipy.optimize import minimize

from .model import STMModel


def make_pd(M: np.ndarray, floor: float = 1e-6) -> np.ndarray:
    """Symmetrize and clip eigenvalues so M is positive definite."""
    M = 0.5 * (M + M.T)
    w, V = np.linalg.eigh(M)
    w = np.maximum(w, floor)
    return (V * w) @ V.T


class VariationalEstimator:
    """Laplace approximation of each document's posterior over eta."""

    def __init__(self, model: STMModel, max_iter: int = 500, tol: float = 1e-5):
        self.m = model
        self.max_iter = max_iter
        self.tol = tol

    def optimize_eta(self, counts: Dict[int, int], mu_d: np.ndarray, siginv: np.ndarray,
                     eta0: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        words = np.fromiter(counts.keys(), dtype=np.int64, count=len(counts))
        c = np.fromiter(counts.values(), dtype=np.float64, count=len(counts))
        m = self.m
        res = minimize(lambda a: -m.f_objective(a, words, c, mu_d, siginv), eta0,
                       jac=lambda a: -m.grad_objective(a, words, c, mu_d, siginv),
                       method='BFGS', options={'maxiter': self.max_iter, 'gtol': self.tol})
        eta = res.x
        return eta, words, c

    def posterior_cov(self, eta, words, c, siginv) -> np.ndarray:
        # nu = (-H)^{-1} at the mode
        H = self.m.hessian_objective(eta, words, c, siginv)
        prec = make_pd(-H)
        return np.linalg.inv(prec)

    def e_step_doc(self, counts: Dict[int, int], mu_d: np.ndarray, siginv: np.ndarray,
                   logdet_sigma: float, eta0: np.ndarray):
        eta, words, c = self.optimize_eta(counts, mu_d, siginv, eta0)
        nu = self.posterior_cov(eta, words, c, siginv)
        phi = self.m.phi_doc(eta, words)
        logdet_nu = np.linalg.slogdet(nu)[1]
        bound = self.m.f_objective(eta, words, c, mu_d, siginv) + 0.5 * (logdet_nu - logdet_sigma)
        # expected word-topic counts for the beta update, K x n_d
        ss = phi * c
        return eta, nu, words, ss, bound
