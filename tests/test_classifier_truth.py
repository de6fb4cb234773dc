import json

import numpy as np
import pytest
from pydantic import ValidationError

from ntag.config.schemas import ClassifierCfg
from ntag.errors import SchemaViolationError
from ntag.physics.candidates import Candidate
from ntag.physics.classifier import (
    CallableClassifier,
    LogisticClassifier,
    load_logistic,
    make_classifier,
)
from ntag.physics.events import TruthInfo
from ntag.physics.truth import label_candidates, BKG, H_CAPTURE, GD_CAPTURE


def test_logistic_score():
    clf = LogisticClassifier(["N10", "sumQ"], [0.0, 0.0], bias=0.0)
    assert clf.evaluate({"N10": 9.0, "sumQ": 3.0}) == pytest.approx(0.5)
    clf = LogisticClassifier(["N10"], [1.0], bias=-10.0)
    assert clf.evaluate({"N10": 10.0}) == pytest.approx(0.5)
    assert clf.evaluate({"N10": 20.0}) > 0.99


def test_missing_input_name_is_not_defaulted():
    clf = LogisticClassifier(["N10", "beta1"], [1.0, 1.0])
    with pytest.raises(SchemaViolationError, match="beta1"):
        clf.evaluate({"N10": 9.0})


def test_callable_classifier_gets_ordered_vector():
    seen = []
    clf = CallableClassifier(["b", "a"], lambda x: seen.append(list(x)) or 1.0)
    assert clf.evaluate({"a": 1.0, "b": 2.0}) == 1.0
    assert seen == [[2.0, 1.0]]


def test_load_weights(tmp_path):
    pj = tmp_path / "w.json"
    pj.write_text(json.dumps({"names": ["N10"], "weights": [0.5], "bias": 1.0}))
    clf = load_logistic(pj)
    assert clf.feature_names == ["N10"] and clf.bias == 1.0

    pz = tmp_path / "w.npz"
    np.savez(pz, names=np.array(["N10", "sumQ"]), weights=np.array([1.0, 2.0]))
    clf = load_logistic(pz)
    assert clf.feature_names == ["N10", "sumQ"]
    assert np.allclose(clf.weights, [1.0, 2.0]) and clf.bias == 0.0

    assert make_classifier(ClassifierCfg()) is None
    assert isinstance(make_classifier(ClassifierCfg(type="logistic", weights_path=str(pj))), LogisticClassifier)


def test_logistic_needs_weights_path():
    with pytest.raises(ValidationError):
        ClassifierCfg(type="logistic")


def _cand(cid, ct):
    return Candidate(candidate_id=cid, hits=None, start=0, stop=0, float_vars={"ReconCT": ct})


def test_truth_labels():
    truth = TruthInfo(
        capture_t_ns=np.array([1100.0, 1400.0]),      # 100 and 400 ns on the hit clock
        capture_gamma_mev=np.array([8.0, 2.2]),
    )
    cands = [_cand(0, 110.0), _cand(1, 395.0), _cand(2, 250.0)]
    label_candidates(cands, truth, match_window_ns=40.0, gd_energy_threshold_mev=6.0, trigger_offset_ns=1000.0)
    assert [c.int_vars["CaptureType"] for c in cands] == [GD_CAPTURE, H_CAPTURE, BKG]
    assert cands[0].float_vars["TrueCT"] == 100.0
    assert cands[1].float_vars["TrueCT"] == 400.0
    assert np.isnan(cands[2].float_vars["TrueCT"])


def test_truth_without_captures_labels_background():
    cands = [_cand(0, 10.0)]
    label_candidates(cands, TruthInfo())
    assert cands[0].int_vars["CaptureType"] == BKG
    assert np.isnan(cands[0].float_vars["TrueCT"])
