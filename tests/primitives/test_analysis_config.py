# tests/primitives/test_analysis_config.py
# 分析配置加载与校验测试 / Analysis config loading & validation tests

import pytest

from augur.config import AnalysisConfig, AnalysisConfigLoader, expand_env_vars
from augur.primitives.errors import InvalidConfiguration


class TestValidate:
    def test_defaults_are_valid(self):
        config = AnalysisConfig().validate()
        assert config.min_agents_required == 2
        assert config.per_agent_timeout == 10.0
        assert config.min_edge_threshold == 0.05
        assert config.debate_blend_weight == 0.5

    def test_negative_weight_rejected(self):
        with pytest.raises(InvalidConfiguration) as exc_info:
            AnalysisConfig(fusion_weights={"polls": -1.0}).validate()
        assert "polls" in str(exc_info.value)

    def test_inverted_regime_thresholds_rejected(self):
        with pytest.raises(InvalidConfiguration):
            AnalysisConfig(high_confidence_threshold=0.3, high_disagreement_threshold=0.2).validate()

    def test_collects_every_problem(self):
        with pytest.raises(InvalidConfiguration) as exc_info:
            AnalysisConfig(min_agents_required=0, per_agent_timeout=0, conflict_threshold=1.5).validate()
        assert len(exc_info.value.problems) == 3

    def test_non_numeric_cutoff_reported_not_raised(self):
        with pytest.raises(InvalidConfiguration) as exc_info:
            AnalysisConfig(liquidity_high_risk_below="low", spread_medium_risk_at=None).validate()
        assert len(exc_info.value.problems) == 2

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(InvalidConfiguration):
            AnalysisConfig.from_dict({"min_agents": 3})


class TestLoader:
    def test_priority_code_over_file_over_env(self, tmp_path):
        cfg_file = tmp_path / "augur.yaml"
        cfg_file.write_text(
            "per_agent_timeout: 15\n"
            "min_edge_threshold: 0.08\n"
            "fusion_weights:\n"
            "  polls: 1.5\n",
            encoding="utf-8",
        )
        environ = {
            "AUGUR_PER_AGENT_TIMEOUT": "20",
            "AUGUR_MIN_AGENTS_REQUIRED": "3",
            "AUGUR_FUSION_WEIGHTS": "polls=0.5,news=0.7",
        }
        config = AnalysisConfigLoader(
            config={"min_edge_threshold": 0.1},
            config_file=str(cfg_file),
            environ=environ,
        ).load()
        assert config.min_edge_threshold == 0.1  # code
        assert config.per_agent_timeout == 15  # file beats env
        assert config.min_agents_required == 3  # env only
        assert config.fusion_weights == {"polls": 1.5, "news": 0.7}

    def test_env_references_in_file_are_expanded(self, tmp_path):
        cfg_file = tmp_path / "augur.yaml"
        cfg_file.write_text("debate_rounds: ${ROUNDS:-2}\n", encoding="utf-8")
        config = AnalysisConfigLoader(config_file=str(cfg_file), environ={}).load()
        assert config.debate_rounds == 2

    def test_missing_file_falls_back_to_defaults(self, tmp_path):
        config = AnalysisConfigLoader(config_file=str(tmp_path / "nope.yaml"), environ={}).load()
        assert config == AnalysisConfig()

    def test_invalid_env_value_raises(self, tmp_path):
        with pytest.raises(InvalidConfiguration):
            AnalysisConfigLoader(
                config_file=str(tmp_path / "nope.yaml"),
                environ={"AUGUR_DEBATE_ROUNDS": "many"},
            ).load()

    def test_loaded_config_is_validated(self, tmp_path):
        with pytest.raises(InvalidConfiguration):
            AnalysisConfigLoader(
                config={"band_multiplier": -1.0},
                config_file=str(tmp_path / "nope.yaml"),
                environ={},
            ).load()


def test_expand_env_vars_keeps_unknown_reference():
    assert expand_env_vars({"k": "${MISSING_VAR}"}, {}) == {"k": "${MISSING_VAR}"}
    assert expand_env_vars(["${A}"], {"A": "x"}) == ["x"]
