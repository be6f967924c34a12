import numpy as np
import pytest

import training
from exceptions import ArgumentError, LoadError, TrainingError
from tables import DataSaver
from training import (
    EvaluationReport,
    ForestParameters,
    ForestTrainer,
    build_classifier,
    load_model,
    save_model,
    summarize_predictions,
)


def _small_params(**overrides) -> ForestParameters:
    values = dict(num_trees=10, max_depth=3, cv_folds=3, n_jobs=1)
    values.update(overrides)
    return ForestParameters(**values)


def test_parameters_from_config_and_overrides(config):
    params = ForestParameters.from_config(config, num_trees=50, max_depth=None)

    assert params.num_trees == 50
    assert params.max_depth == 3
    assert params.num_features == 0
    assert params.cv_folds == 10
    assert params.options() == "-K 0 -depth 3 -I 50 -S 1"


def test_parameter_zero_values_map_to_library_defaults():
    params = ForestParameters(num_features=0, max_depth=0)

    assert params.max_features == "sqrt"
    assert params.depth_limit is None
    assert ForestParameters(num_features=4).max_features == 4


@pytest.mark.parametrize("overrides", [{"num_trees": 0}, {"cv_folds": 1}, {"num_features": -1}, {"max_depth": -2}])
def test_invalid_parameters_rejected(config, overrides):
    with pytest.raises(TrainingError):
        ForestParameters.from_config(config, **overrides)


def test_classifier_encodes_declared_nominal_values(training_table):
    features = training_table.drop(columns=["Category"])

    model = build_classifier(features, _small_params())
    forest = model.named_steps["forest"]

    assert forest.n_estimators == 10
    assert forest.max_depth == 3
    assert forest.oob_score is True
    encode = model.named_steps["encode"]
    name, encoder, columns = encode.transformers[0]
    assert (name, columns) == ("nominal", ["Sex"])
    assert encoder.categories == [["0", "1"]]
    assert encode.transformers[1] == ("numeric", "passthrough", ["ALB"])


def test_summary_from_probabilities():
    y = np.array(["0", "0", "1", "1"], dtype=object)
    proba = np.array([[0.9, 0.1], [0.4, 0.6], [0.2, 0.8], [0.3, 0.7]])

    report = summarize_predictions(y, proba, ["0", "1"], relation="r", folds=2, seed=0, num_attributes=3)

    assert report.correct == 3
    assert report.incorrect == 1
    assert report.confusion.tolist() == [[1, 1], [0, 2]]
    assert report.mean_absolute_error == pytest.approx(0.3)
    assert report.total_cost == 1
    assert report.average_cost == pytest.approx(0.25)
    assert report.class_details.loc["0", "Precision"] == pytest.approx(1.0)
    assert report.class_details.loc["1", "Recall"] == pytest.approx(1.0)
    assert "Weighted Avg." in report.class_details.index


def test_cross_validation_report(config, training_table):
    trainer = ForestTrainer(config, _small_params())

    report = trainer.cross_validate(training_table)

    assert isinstance(report, EvaluationReport)
    assert report.num_instances == 40
    assert report.confusion.sum() == 40
    assert report.labels == ["0", "1"]
    assert report.accuracy > 0.9
    assert 0.0 <= report.mean_absolute_error <= 1.0
    text = str(report)
    assert "=== 3-fold Cross-validation ===" in text
    assert "=== Confusion Matrix ===" in text
    assert "=== Class Details ===" in text


def test_cross_validation_is_reproducible(config, training_table):
    first = ForestTrainer(config, _small_params()).cross_validate(training_table)
    second = ForestTrainer(config, _small_params()).cross_validate(training_table)

    assert first.confusion.tolist() == second.confusion.tolist()
    assert first.mean_absolute_error == pytest.approx(second.mean_absolute_error)


def test_fewer_instances_than_folds_rejected(config, training_table):
    trainer = ForestTrainer(config, _small_params(cv_folds=50))

    with pytest.raises(TrainingError):
        trainer.cross_validate(training_table)


def test_missing_label_column_rejected(config, training_table):
    trainer = ForestTrainer(config, _small_params())

    with pytest.raises(TrainingError):
        trainer.cross_validate(training_table.drop(columns=["Category"]))


def test_saved_model_predicts_after_reload(config, training_table, tmp_path):
    trainer = ForestTrainer(config, _small_params())
    model = trainer.fit(training_table)

    path = save_model(model, tmp_path / "models" / "rf.model")
    restored = load_model(path)

    features, y, _ = trainer.prepare(training_table)
    assert list(restored.predict(features)) == list(model.predict(features))
    assert set(restored.predict(features)) <= {"0", "1"}


def test_load_model_errors(tmp_path):
    with pytest.raises(LoadError):
        load_model(tmp_path / "absent.model")

    garbage = tmp_path / "garbage.model"
    garbage.write_text("not a model", encoding="utf-8")
    with pytest.raises(LoadError):
        load_model(garbage)


def test_parse_arguments_accepts_equals_flags():
    args = training.parse_arguments(
        ["data.arff", "-K=2", "-depth=0", "-I=5", "-S=7", "-cv_folds=4", "-cv_seed=3", "--output=m"]
    )

    assert args.filename == "data.arff"
    assert (args.num_features, args.max_depth, args.num_trees, args.seed) == (2, 0, 5, 7)
    assert (args.cv_folds, args.cv_seed) == (4, 3)
    assert args.output == "m"
    assert args.report is False


def test_parse_arguments_rejects_bad_values():
    with pytest.raises(ArgumentError):
        training.parse_arguments(["data.arff", "-I=many"])
    with pytest.raises(ArgumentError):
        training.parse_arguments([])


def test_main_trains_saves_and_reports(config, training_table, tmp_path, capsys):
    dataset = DataSaver(config).save(training_table, tmp_path / "hepatitis_test.arff")

    status = training.main([
        str(dataset), "-I=10", "-cv_folds=3", "--output", str(tmp_path / "models" / "rf"),
        "--report", "--root", str(tmp_path),
    ])

    out = capsys.readouterr().out
    assert status == 0
    assert (tmp_path / "models" / "rf.model").exists()
    assert (tmp_path / "Reports" / "ForestFactoryReports" / "hepatitis_test_random_forest_report.pdf").exists()
    assert "===== Random Forest =====" in out
    assert "Random Forest options: -K 0 -depth 3 -I 10 -S 1" in out


def test_main_returns_error_status(tmp_path, capsys):
    status = training.main([str(tmp_path / "absent.arff"), "--root", str(tmp_path)])

    assert status == 1
    assert "ERROR" in capsys.readouterr().err
