import pandas as pd
import pytest

from stm_cartas.config import CovariateConfig, FilterConfig, LoaderConfig
from stm_cartas.data import CorpusLoader, CovariateNormalizer, KeywordFilter, clean_names
from stm_cartas.errors import ConfigurationError, DataError

from conftest import make_letters


def test_clean_names():
    assert clean_names(['Sugestão Texto', 'UF', 'Estado Civil', 'UF', 'faixaEtaria']) == [
        'sugestao_texto', 'uf', 'estado_civil', 'uf_2', 'faixa_etaria']


def test_loader_reads_latin1_semicolon_file(tmp_path):
    path = tmp_path / 'base.csv'
    content = ('Sugestão Texto;Catálogo;UF;Data\n'
               '  Defesa da fauna  ;Meio ambiente;SP;05/10/1986\n'
               'Mais escolas;Educação;;31/12/1987\n')
    path.write_bytes(content.encode('latin-1'))
    loader = CorpusLoader(LoaderConfig(path=str(path)), ['sugestao_texto', 'catalogo', 'uf', 'data'])
    df = loader.load()
    assert list(df.columns[:4]) == ['sugestao_texto', 'catalogo', 'uf', 'data']
    assert df.loc[0, 'sugestao_texto'] == 'Defesa da fauna'
    assert df.loc[1, 'catalogo'] == 'Educação'
    assert pd.isna(df.loc[1, 'uf'])
    assert list(df['ano']) == [1986, 1987]


def test_loader_rejects_missing_columns(tmp_path):
    path = tmp_path / 'base.csv'
    path.write_bytes('sugestao_texto;uf\nx;SP\n'.encode('latin-1'))
    loader = CorpusLoader(LoaderConfig(path=str(path)), ['sugestao_texto', 'catalogo', 'uf'])
    with pytest.raises(DataError, match='catalogo'):
        loader.load()


def test_loader_missing_file(tmp_path):
    with pytest.raises(DataError):
        CorpusLoader(LoaderConfig(path=str(tmp_path / 'nope.csv'))).load()


@pytest.mark.parametrize('content', [b'', 'texto;uf\n"proteção das florestas;SP\n'.encode('latin-1')])
def test_loader_malformed_file(tmp_path, content):
    path = tmp_path / 'base.csv'
    path.write_bytes(content)
    with pytest.raises(DataError, match='cannot parse'):
        CorpusLoader(LoaderConfig(path=str(path))).load()


def test_loader_encoding_mismatch(tmp_path):
    path = tmp_path / 'base.csv'
    path.write_bytes('texto;uf\nproteção;SP\n'.encode('latin-1'))
    with pytest.raises(DataError):
        CorpusLoader(LoaderConfig(path=str(path), encoding='utf-8')).load()


def test_keyword_filter_flora_fauna():
    df = pd.DataFrame({
        'sugestao_texto': ['a', 'b', 'c', 'd'],
        'catalogo': ['Política - Defesa da FaUnA', 'Saúde', None, 'Educação'],
        'indexacao': [None, None, 'proteção da flora', 'escolas'],
    })
    one_field = KeywordFilter(FilterConfig(keywords=['flora', 'fauna'], fields=['catalogo'])).apply(df)
    assert list(one_field['sugestao_texto']) == ['a']
    two_fields = KeywordFilter(FilterConfig(keywords=['flora', 'fauna'],
                                            fields=['catalogo', 'indexacao'])).apply(df)
    assert list(two_fields['sugestao_texto']) == ['a', 'c']


def test_keyword_filter_drops_empty_text():
    df = pd.DataFrame({'sugestao_texto': ['x', None, ''], 'catalogo': ['fauna'] * 3})
    out = KeywordFilter(FilterConfig(keywords=['fauna'], fields=['catalogo'])).apply(df)
    assert len(out) == 1


def test_keyword_filter_errors():
    with pytest.raises(ConfigurationError):
        KeywordFilter(FilterConfig(keywords=[], fields=['catalogo']))
    df = pd.DataFrame({'sugestao_texto': ['x'], 'catalogo': ['saúde']})
    with pytest.raises(DataError):
        KeywordFilter(FilterConfig(keywords=['fauna'], fields=['catalogo'])).apply(df)


def test_normalizer_fills_unknown_and_sets_reference():
    df = make_letters(30)
    cfg = CovariateConfig(reference_levels={'uf': 'SP'})
    out = CovariateNormalizer(cfg).apply(df)
    assert len(out) == len(df)
    for col in cfg.columns:
        assert isinstance(out[col].dtype, pd.CategoricalDtype)
        assert not out[col].isna().any()
    assert list(out['uf'].cat.categories) == ['SP', 'MG', 'RJ']
    assert 'NA_desconhecido' in out['sexo'].cat.categories
    assert (out['sexo'] == 'NA_desconhecido').sum() == df['sexo'].isna().sum()


def test_normalizer_is_idempotent():
    norm = CovariateNormalizer(CovariateConfig(reference_levels={'uf': 'RJ'}))
    once = norm.apply(make_letters(30))
    twice = norm.apply(once)
    for col in norm.config.columns:
        assert list(once[col].cat.categories) == list(twice[col].cat.categories)
        assert once[col].astype(object).tolist() == twice[col].astype(object).tolist()


def test_normalizer_unknown_reference():
    with pytest.raises(ConfigurationError):
        CovariateNormalizer(CovariateConfig(reference_levels={'uf': 'AC'})).apply(make_letters(9))
