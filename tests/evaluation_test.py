import numpy as np
import pytest

from stm_cartas.em import fit_stm
from stm_cartas.evaluation import (eval_heldout, exclusivity, make_heldout, search_k,
                                   semantic_coherence)

from conftest import small_config


def test_make_heldout_removes_tokens_but_keeps_alignment(prepared):
    held = make_heldout(prepared, N=0.2, proportion=0.5, seed=3)
    train = held.corpus
    assert len(train.documents) == len(train.meta) == len(prepared.documents)
    assert len(held.missing) == int(np.floor(len(prepared.documents) * 0.2))
    for d, missing in held.missing.items():
        before = prepared.documents[d]
        after = train.documents[d]
        assert sum(after.values()) > 0
        for v, c in missing.items():
            assert after.get(v, 0) + c == before[v]
    untouched = set(range(len(prepared.documents))) - set(held.missing)
    for d in untouched:
        assert train.documents[d] == prepared.documents[d]


def test_diagnostics_are_finite(fitted, prepared):
    held = make_heldout(prepared, seed=1)
    assert eval_heldout(fitted, held.missing) < 0
    coh = semantic_coherence(fitted, prepared.documents)
    excl = exclusivity(fitted)
    assert coh.shape == excl.shape == (fitted.K,)
    assert np.isfinite(coh).all() and np.isfinite(excl).all()


@pytest.mark.filterwarnings('ignore::sklearn.exceptions.ConvergenceWarning')
def test_search_k_one_row_per_k(prepared):
    cfg = small_config(max_em_its=3).model
    res = search_k(prepared, [2, 3], cfg)
    assert list(res['K']) == [2, 3]
    assert set(res.columns) >= {'bound', 'heldout', 'semcoh', 'exclusivity'}
    assert np.isfinite(res[['bound', 'heldout', 'semcoh', 'exclusivity']].to_numpy()).all()


@pytest.mark.filterwarnings('ignore::sklearn.exceptions.ConvergenceWarning')
def test_search_k_uses_its_own_prevalence_formula(prepared, monkeypatch):
    designs = []

    def recording_fit(corpus, config, verbose=False):
        model = fit_stm(corpus, config, verbose=verbose)
        designs.append(model.design)
        return model

    monkeypatch.setattr('stm_cartas.evaluation.fit_stm', recording_fit)
    cfg = small_config(max_em_its=2).model
    search_k(prepared, [2], cfg, prevalence='~ uf')
    assert [d.covariates for d in designs] == [['uf']]
    assert not any(t.startswith('sexo') for t in designs[0].terms)
    search_k(prepared, [2], cfg)
    assert designs[1].covariates == ['uf', 'sexo']
