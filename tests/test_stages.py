"""
Tests for the reporting stages: descriptive tables, variance sensitivity,
figure generation and the pipeline runner.
"""

import os

import numpy as np
import pytest

import itsa_config as cfg
from conftest import CODE_DIR, load_stage
from itsa_models import build_design, fit_triple_interaction, fitted_lines
from meps_data import analysis_sample


@pytest.fixture(scope="module")
def design(pooled):
    return build_design(analysis_sample(pooled, 'totexp'))


class TestDescriptiveStage:

    def test_population_totals_labelled(self, design):
        stage = load_stage("03_descriptive_estimates.py")
        totals = stage.population_totals(design)
        assert totals['group'].tolist() == ['Male', 'Female']

    def test_means_by_group_period(self, design):
        stage = load_stage("03_descriptive_estimates.py")
        means = stage.means_by_group_period(design)
        assert len(means) == 8  # 2 outcomes x 2 groups x 2 periods
        assert set(means['outcome']) == {'totexp', 'ertexp'}

    def test_means_by_group_year(self, design):
        stage = load_stage("03_descriptive_estimates.py")
        means = stage.means_by_group_year(design, 'totexp')
        assert len(means) == 12
        assert (means['se'] > 0).all()


class TestVarianceSensitivity:

    def test_same_estimates_different_errors(self, design):
        stage = load_stage("06_variance_sensitivity.py")
        triple = fit_triple_interaction(design, 'totexp')
        table = stage.compare_standard_errors(triple)

        assert table['term'].tolist() == triple.params.index.tolist()
        np.testing.assert_allclose(table['estimate'], triple.params.to_numpy())
        for col in ['se_naive', 'se_hc1', 'se_psu_cluster', 'se_design']:
            assert (table[col] > 0).all()
        assert table['inference_changes'].dtype == bool


class TestFigure:

    def test_plot_written(self, design, tmp_path):
        stage = load_stage("07_generate_figures.py")
        triple = fit_triple_interaction(design, 'totexp')
        year_means = design.mean('totexp', by=['female', 'year'])
        lines = fitted_lines(triple, cfg.YEARS, cutoff=2019)

        output_path = tmp_path / "itsa_totexp.png"
        stage.plot_itsa(year_means, lines, 2019, 'totexp', str(output_path))

        assert output_path.exists()
        assert output_path.stat().st_size > 0

    def test_missing_table(self, tmp_path, monkeypatch):
        stage = load_stage("07_generate_figures.py")
        monkeypatch.setattr(cfg, "OUTPUT_TABLES", str(tmp_path))
        with pytest.raises(FileNotFoundError):
            stage.load_table("means_by_group_year.csv")


class TestRunAll:

    def test_stage_scripts_exist(self):
        runner = load_stage("run_all.py")
        for stage in runner.STAGES:
            assert os.path.exists(os.path.join(CODE_DIR, stage['script'])), stage['script']

    def test_figure_output_follows_configured_outcome(self, monkeypatch):
        monkeypatch.setattr(cfg, "OUTCOME", "ertexp")
        runner = load_stage("run_all.py")
        figure_stage = [s for s in runner.STAGES if s['script'] == '07_generate_figures.py'][0]
        assert figure_stage['outputs'] == ['figures/itsa_ertexp.png']
        assert runner.BASE_DIR == cfg.BASE_DIR

    def test_missing_script_reported(self, tmp_path):
        runner = load_stage("run_all.py")
        assert runner.run_script(str(tmp_path / "nope.py"), "missing") is False
