"""Tests for lheweights.weight_config: producer configuration and its JSON loader."""

import dataclasses
import json

import pytest

from lheweights.errors import ConfigurationError
from lheweights.weight_config import (
    DEFAULT_PREFERRED_PDFS,
    WeightConfig,
    load_weight_config,
)


# ---------------------------------------------------------------------------
# WeightConfig
# ---------------------------------------------------------------------------

class TestWeightConfig:
    def test_defaults(self):
        config = WeightConfig()
        assert config.preferred_pdfs == (91400, 260001, 262000, 306000)
        assert config.named_weight_ids == ()
        assert config.named_weight_labels == ()
        assert config.debug is False

    def test_lists_normalised_to_tuples(self):
        config = WeightConfig(preferred_pdfs=[13000], named_weight_ids=[1001], named_weight_labels=["nom"])
        assert config.preferred_pdfs == (13000,)
        assert config.named_weight_ids == ("1001",)
        assert config.named_weight_labels == ("nom",)

    def test_size_mismatch(self):
        with pytest.raises(ConfigurationError, match="Size mismatch between namedWeightIDs & namedWeightLabels"):
            WeightConfig(named_weight_ids=["1001", "1002"], named_weight_labels=["nom"])

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            WeightConfig(named_weight_ids=["1001"])

    @pytest.mark.parametrize("lha_id", [-1, 2**32])
    def test_lha_id_out_of_range(self, lha_id):
        with pytest.raises(ConfigurationError, match="out of range"):
            WeightConfig(preferred_pdfs=[lha_id])

    def test_replace_revalidates(self):
        config = WeightConfig(named_weight_ids=["1001"], named_weight_labels=["nom"])
        with pytest.raises(ConfigurationError):
            dataclasses.replace(config, named_weight_labels=[])

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            WeightConfig().debug = True


# ---------------------------------------------------------------------------
# load_weight_config
# ---------------------------------------------------------------------------

class TestLoadWeightConfig:
    def test_full_file(self, tmp_path):
        path = tmp_path / "weights.json"
        path.write_text(json.dumps({
            "preferredPDFs": [306000, 91400],
            "namedWeightIDs": ["1001", "rwgt_1"],
            "namedWeightLabels": ["nominal", "rwgt1"],
            "debug": True,
        }))
        config = load_weight_config(path)
        assert config.preferred_pdfs == (306000, 91400)
        assert config.named_weight_ids == ("1001", "rwgt_1")
        assert config.named_weight_labels == ("nominal", "rwgt1")
        assert config.debug is True

    def test_missing_keys_use_defaults(self, tmp_path):
        path = tmp_path / "weights.json"
        path.write_text("{}")
        assert load_weight_config(path) == WeightConfig()
        assert load_weight_config(path).preferred_pdfs == DEFAULT_PREFERRED_PDFS

    def test_missing_file(self, tmp_path):
        with pytest.raises(RuntimeError, match="Failed to read JSON file"):
            load_weight_config(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(RuntimeError):
            load_weight_config(path)

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigurationError, match="JSON object"):
            load_weight_config(path)

    def test_mismatched_named_weights_in_file(self, tmp_path):
        path = tmp_path / "weights.json"
        path.write_text(json.dumps({"namedWeightIDs": ["1001"], "namedWeightLabels": []}))
        with pytest.raises(ConfigurationError):
            load_weight_config(path)
