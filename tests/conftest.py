import matplotlib
matplotlib.use('Agg')

import numpy as np
import pandas as pd
import pytest

from stm_cartas.config import (CovariateConfig, FilterConfig, ModelConfig, PipelineConfig,
                               PruneConfig, TextConfig, EffectConfig)

FOREST = ['floresta', 'árvores', 'desmatamento', 'amazônia', 'queimadas', 'reservas']
WATER = ['poluição', 'rios', 'fábricas', 'esgoto', 'água', 'lixo']
STOPWORDS = ['de', 'da', 'do', 'das', 'dos', 'a', 'o', 'e', 'que', 'em', 'para', 'os', 'as']
UFS = ['SP', 'RJ', 'MG']


def make_letters(n: int = 60, seed: int = 0) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    rows = []
    for i in range(n):
        uf = UFS[i % 3]
        p_forest = 0.8 if uf == 'SP' else 0.2
        words = []
        for _ in range(14):
            pool = FOREST if rng.random() < p_forest else WATER
            words.append(pool[rng.integers(len(pool))])
        text = 'Sugiro a proteção ' + ' de '.join(words) + f' no ano {1987 + i % 2}.'
        env = i % 4 != 3
        rows.append({
            'sugestao_texto': text,
            'catalogo': 'Meio Ambiente - Defesa da FAUNA' if env else 'Saúde pública',
            'indexacao': 'flora nativa' if i % 8 == 3 else None,
            'uf': uf,
            'sexo': [None, 'F', 'M'][i % 3] if i % 5 == 0 else ['F', 'M'][i % 2],
            'morador': ['urbano', 'rural', None][i % 3],
            'instrucao': ['superior', 'medio'][i % 2],
            'estado_civil': ['solteiro', 'casado'][i % 2],
            'faixa_etaria': ['20 a 29', '30 a 39', None][i % 3],
            'atividade': ['estudante', 'agricultor'][i % 2],
            'data': f'{1 + i % 28:02d}/0{1 + i % 9}/1986',
        })
    return pd.DataFrame(rows)


def small_config(**model) -> PipelineConfig:
    model_cfg = dict(K=3, prevalence='~ uf + sexo', max_em_its=15, init_type='Spectral', emtol=1e-4)
    model_cfg.update(model)
    return PipelineConfig(
        name='test',
        filter=FilterConfig(keywords=['flora', 'fauna'], fields=['catalogo']),
        covariates=CovariateConfig(reference_levels={'uf': 'SP'}),
        text=TextConfig(stopwords=STOPWORDS),
        prune=PruneConfig(lower_thresh=3),
        model=ModelConfig(**model_cfg),
        effects=EffectConfig(uncertainty='Global', nsims=5, draws_per_sim=20),
        verbose=False,
    )


@pytest.fixture
def letters():
    return make_letters()


@pytest.fixture(scope='session')
def prepared():
    from stm_cartas.pipeline import prepare_corpus
    _, _, corpus = prepare_corpus(small_config(), make_letters())
    return corpus


@pytest.fixture(scope='session')
def fitted(prepared):
    from stm_cartas.em import fit_stm
    return fit_stm(prepared, small_config().model)
