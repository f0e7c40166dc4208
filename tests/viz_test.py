import os

import matplotlib.pyplot as plt
import pytest

from stm_cartas.config import EffectConfig
from stm_cartas.effects import EffectEstimator
from stm_cartas.errors import RenderError
from stm_cartas.viz import (effect_chart_data, plot_bound_curve, plot_covariate_effects,
                            plot_topic_summary)


@pytest.fixture(scope='module')
def effects(fitted, prepared):
    return EffectEstimator(EffectConfig(uncertainty='None')).estimate(fitted, prepared.meta)


def test_effect_chart_sorted_with_reference(effects, tmp_path):
    out = tmp_path / 'uf.png'
    fig, path = plot_covariate_effects(effects, 2, 'uf', labels={'SP': 'São Paulo'}, out_path=str(out))
    assert path == str(out)
    assert out.exists()
    data = effect_chart_data(effects, 2, 'uf')
    assert list(data['estimate']) == sorted(data['estimate'])
    assert data['is_reference'].sum() == 1
    labels = [t.get_text() for t in fig.axes[0].get_yticklabels()]
    assert 'São Paulo' in labels
    assert len(labels) == len(data)


def test_zero_matching_terms_draws_only_reference(effects):
    data = effect_chart_data(effects, 1, 'regiao', reference_level='Sudeste')
    assert len(data) == 1
    assert data['level'].iloc[0] == 'Sudeste'
    fig, path = plot_covariate_effects(effects, 1, 'regiao', reference_level='Sudeste')
    assert path is None
    assert [t.get_text() for t in fig.axes[0].get_yticklabels()] == ['Sudeste']


def test_unsaved_chart_is_closed(effects):
    before = set(plt.get_fignums())
    _, path = plot_covariate_effects(effects, 1, 'uf')
    assert path is None
    assert set(plt.get_fignums()) == before


def test_chart_errors(effects):
    with pytest.raises(RenderError):
        plot_covariate_effects(effects, 0, 'uf')
    with pytest.raises(RenderError):
        plot_covariate_effects(effects, effects.K + 1, 'uf')
    with pytest.raises(RenderError):
        plot_covariate_effects(effects, 1, 'regiao')


def test_summary_and_bound_plots(fitted, tmp_path):
    summary = tmp_path / 'summary.png'
    bound = tmp_path / 'nested' / 'bound.png'
    plot_topic_summary(fitted, str(summary))
    plot_bound_curve(fitted.bound_history, str(bound))
    assert os.path.getsize(summary) > 0
    assert os.path.getsize(bound) > 0
