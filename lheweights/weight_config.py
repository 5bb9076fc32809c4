"""Lightweight configuration for the LHE weight producer.

Keep this module free of heavy imports so it can be shipped to workers cheaply.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from lheweights.errors import ConfigurationError

logger = logging.getLogger(__name__)

# LHA IDs of PDF error sets, in order of preference.  The first family in
# this list that is declared in the run header is kept.
#   91400  PDF4LHC15_nnlo_30_pdfas
#   260001 NNPDF30_nlo_as_0118 (member 1; member 0 is usually the nominal)
#   262000 NNPDF30_lo_as_0130
#   306000 NNPDF31_nnlo_hessian_pdfas
DEFAULT_PREFERRED_PDFS = (91400, 260001, 262000, 306000)

# Header section scanned for weight groups.
INITRWGT_TAG = "initrwgt"

# Weight group names recognized in the header.
SCALE_GROUP_NAME = "scale_variation"
PDF_GROUP_NAME = "PDF_variation"

# --- Output naming (single source of truth for table / branch names) ---------
GEN_WEIGHT_TABLE = "genWeight"
LHE_SCALE_TABLE = "LHEScaleWeight"
LHE_PDF_TABLE = "LHEPdfWeight"
LHE_NAMED_TABLE = "LHEWeight"
LHE_NOMINAL_COLUMN = "originalXWGTUP"

RUN_COUNT = "genEventCount"
RUN_SUMW = "genEventSumw"
RUN_SUMW2 = "genEventSumw2"
RUN_SCALE_SUMW = "LHEScaleSumw"
RUN_PDF_SUMW = "LHEPdfSumw"
RUN_NAMED_SUMW_PREFIX = "LHESumw_"

SCALE_DOC_PREFIX = "LHE scale variation weights (w_var / w_nominal); "
PDF_DOC_PREFIX = "LHE pdf variation weights (w_var / w_nominal) for LHA IDs "

DEFAULT_CHUNKSIZE = 10_000


@dataclass(frozen=True)
class WeightConfig:
    """Producer configuration.

    ``named_weight_ids`` and ``named_weight_labels`` are parallel lists: the
    weight with id ``named_weight_ids[i]`` is exported as
    ``LHEWeight_<named_weight_labels[i]>``.
    """
    preferred_pdfs: tuple[int, ...] = DEFAULT_PREFERRED_PDFS
    named_weight_ids: tuple[str, ...] = field(default_factory=tuple)
    named_weight_labels: tuple[str, ...] = field(default_factory=tuple)
    debug: bool = False

    def __post_init__(self):
        # Normalise lists coming from JSON / argparse into tuples.
        object.__setattr__(self, "preferred_pdfs", tuple(int(x) for x in self.preferred_pdfs))
        object.__setattr__(self, "named_weight_ids", tuple(str(x) for x in self.named_weight_ids))
        object.__setattr__(self, "named_weight_labels", tuple(str(x) for x in self.named_weight_labels))
        if len(self.named_weight_ids) != len(self.named_weight_labels):
            raise ConfigurationError(
                "Size mismatch between namedWeightIDs & namedWeightLabels "
                f"({len(self.named_weight_ids)} ids, {len(self.named_weight_labels)} labels)"
            )
        for lha_id in self.preferred_pdfs:
            if not 0 <= lha_id <= 0xFFFFFFFF:
                raise ConfigurationError(f"Preferred PDF LHA ID out of range: {lha_id}")


def load_weight_config(filepath) -> WeightConfig:
    """
    Load a WeightConfig from a JSON file.

    Recognized keys: ``preferredPDFs``, ``namedWeightIDs``,
    ``namedWeightLabels``, ``debug``.  Missing keys keep their defaults.
    """
    try:
        with open(filepath, 'r', encoding='utf-8') as file:
            data = json.load(file)
            logger.info("Successfully loaded weight config: %s", filepath)
    except Exception as e:
        raise RuntimeError(f"Failed to read JSON file {filepath}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Weight config {filepath} must contain a JSON object")

    return WeightConfig(
        preferred_pdfs=data.get("preferredPDFs", DEFAULT_PREFERRED_PDFS),
        named_weight_ids=data.get("namedWeightIDs", ()),
        named_weight_labels=data.get("namedWeightLabels", ()),
        debug=bool(data.get("debug", False)),
    )
