import numpy as np
import pandas as pd
import pytest
from sklearn.exceptions import ConvergenceWarning

from stm_cartas.anchor import AnchorInitializer, initialize_beta
from stm_cartas.design import build_design_matrix, parse_formula
from stm_cartas.em import fit_stm
from stm_cartas.errors import ConfigurationError
from stm_cartas.model import STMModel

from conftest import small_config


def toy_model(K=3, V=20, seed=0):
    rng = np.random.default_rng(seed)
    meta = pd.DataFrame({'uf': pd.Categorical(['SP', 'RJ', 'MG', 'SP'], categories=['SP', 'MG', 'RJ'])})
    m = STMModel(K, [f'w{i}' for i in range(V)], build_design_matrix(meta, '~ uf'))
    b = rng.random((K, V))
    m.beta = b / b.sum(axis=1, keepdims=True)
    m.Gamma = rng.normal(0, 0.3, size=m.Gamma.shape)
    return m


def test_parse_formula():
    assert parse_formula('~ uf + sexo + faixa_etaria') == ['uf', 'sexo', 'faixa_etaria']
    with pytest.raises(ConfigurationError):
        parse_formula('y ~ uf')
    with pytest.raises(ConfigurationError):
        parse_formula('~ uf + ')


def test_design_matrix_treatment_coding():
    m = toy_model()
    assert list(m.design.X.columns) == ['intercept', 'ufMG', 'ufRJ']
    assert m.design.references == {'uf': 'SP'}
    assert m.design.term_level == {'ufMG': 'MG', 'ufRJ': 'RJ'}
    assert m.X.shape == (4, 3)


def test_shapes():
    m = toy_model()
    assert m.eta.shape == (4, 2)
    th = m.theta
    assert th.shape == (4, 3)
    assert np.allclose(th.sum(axis=1), 1.0)
    words = np.array([0, 3, 7])
    counts = np.array([2.0, 1.0, 4.0])
    val = m.f_objective(np.zeros(2), words, counts, np.zeros(2), np.eye(2))
    assert np.isfinite(val)


def test_gradient_and_hessian_match_finite_differences():
    m = toy_model()
    words = np.array([1, 4, 9, 15])
    counts = np.array([3.0, 1.0, 2.0, 5.0])
    mu = np.array([0.2, -0.1])
    siginv = np.linalg.inv(np.array([[1.0, 0.3], [0.3, 2.0]]))
    eta = np.array([0.4, -0.7])
    eps = 1e-6
    num_grad = np.zeros(2)
    num_hess = np.zeros((2, 2))
    for i in range(2):
        e = np.zeros(2)
        e[i] = eps
        num_grad[i] = (m.f_objective(eta + e, words, counts, mu, siginv)
                       - m.f_objective(eta - e, words, counts, mu, siginv)) / (2 * eps)
        num_hess[:, i] = (m.grad_objective(eta + e, words, counts, mu, siginv)
                          - m.grad_objective(eta - e, words, counts, mu, siginv)) / (2 * eps)
    assert np.allclose(m.grad_objective(eta, words, counts, mu, siginv), num_grad, atol=1e-5)
    assert np.allclose(m.hessian_objective(eta, words, counts, siginv), num_hess, atol=1e-5)


def test_anchor_initializer_returns_distributions(prepared):
    V = len(prepared.vocab)
    beta0, anchors = AnchorInitializer(3, V).initialize(prepared.documents)
    assert beta0.shape == (3, V)
    assert np.allclose(beta0.sum(axis=1), 1.0)
    assert len(set(anchors)) == 3


@pytest.mark.parametrize('init_type', ['Spectral', 'LDA', 'Random'])
def test_initializers(prepared, init_type):
    V, D = len(prepared.vocab), len(prepared.documents)
    beta0, eta0 = initialize_beta(init_type, prepared.documents, V, 3, seed=1)
    assert beta0.shape == (3, V)
    assert eta0.shape == (D, 2)
    assert np.all(beta0 > 0)


def test_fit_produces_distributions(fitted, prepared):
    assert fitted.beta.shape == (3, len(prepared.vocab))
    assert np.allclose(fitted.beta.sum(axis=1), 1.0)
    assert np.allclose(fitted.theta.sum(axis=1), 1.0)
    assert fitted.theta.shape == (len(prepared.documents), 3)
    assert 1 <= len(fitted.bound_history) <= 15
    assert all(np.isfinite(fitted.bound_history))
    for nu in fitted.nu:
        assert np.all(np.linalg.eigvalsh(nu) > 0)


def test_label_topics_and_summary(fitted):
    labels = fitted.label_topics(n=4)
    assert set(labels) == {'prob', 'frex', 'lift', 'score'}
    for words in labels.values():
        assert len(words) == 3
        assert all(len(w) == 4 for w in words)
    assert np.isclose(fitted.topic_proportions().sum(), 1.0)
    assert 'Topic 3' in fitted.summary()


def test_hitting_iteration_cap_warns(prepared):
    cfg = small_config(max_em_its=1).model
    with pytest.warns(ConvergenceWarning):
        model = fit_stm(prepared, cfg)
    assert len(model.bound_history) == 1
    assert not model.converged


def test_invalid_topic_counts(prepared):
    with pytest.raises(ConfigurationError):
        fit_stm(prepared, small_config(K=1).model)
    with pytest.raises(ConfigurationError):
        fit_stm(prepared, small_config(K=len(prepared.vocab) + 1).model)
