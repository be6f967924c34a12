import pandas as pd
import pytest

from exceptions import UnmappedValueError
from processors import (
    ColumnMissingFilter,
    ColumnRemovalStrategy,
    CompactionStrategy,
    LabelNormalizationStrategy,
    MissingValueFilterStrategy,
    NominalRenameStrategy,
    PreprocessingPipeline,
    PreprocessingPipelineStep,
    PreprocessingStrategyFactory,
    as_text,
    parse_column_list,
)
from tables import nominal_values


SHORT_MAPPING = {"0": "0", "0s": "0", "1": "1", "2": "1", "3": "1"}


def test_label_normalization_collapses_classes(config, make_table):
    df = make_table({"Category": ["0", "0s", "1", "2", "3", "1"]}, nominal=("Category",))

    result = LabelNormalizationStrategy(config, "Category", SHORT_MAPPING).process(df)

    assert list(as_text(result["Category"])) == ["0", "0", "1", "1", "1", "1"]
    assert nominal_values(result["Category"]) == ["0", "1"]
    # input table is not modified
    assert nominal_values(df["Category"]) == ["0", "0s", "1", "2", "3"]


def test_label_normalization_fails_on_unmapped_value(config, make_table):
    df = make_table({"Category": ["0", "4", "1", "5"]}, nominal=("Category",))

    with pytest.raises(UnmappedValueError) as excinfo:
        LabelNormalizationStrategy(config, "Category", SHORT_MAPPING).process(df)

    assert excinfo.value.column == "Category"
    assert excinfo.value.values == ["4", "5"]


def test_label_normalization_ignores_declared_but_absent_values(config, make_table):
    df = make_table({"Category": ["0", "1"]}, nominal=("Category",))
    df["Category"] = df["Category"].cat.add_categories(["9"])

    result = LabelNormalizationStrategy(config, "Category", SHORT_MAPPING).process(df)

    assert list(as_text(result["Category"])) == ["0", "1"]


def test_label_normalization_keeps_missing_cells(config, make_table):
    df = make_table({"Category": ["0s", None, "3"]}, nominal=("Category",))

    result = LabelNormalizationStrategy(config, "Category", SHORT_MAPPING).process(df)

    assert result["Category"].isna().tolist() == [False, True, False]


def test_label_normalization_default_mapping_covers_long_labels(config, make_table):
    df = make_table(
        {"Category": ["0=Blood Donor", "0s=suspect Blood Donor", "1=Hepatitis", "2=Fibrosis", "3=Cirrhosis"]},
        nominal=("Category",),
    )

    result = LabelNormalizationStrategy(config).process(df)

    assert list(as_text(result["Category"])) == ["0", "0", "1", "1", "1"]


def test_label_normalization_skips_absent_column(config, make_table):
    df = make_table({"ALB": [1.0, 2.0]})

    result = LabelNormalizationStrategy(config).process(df)

    assert result.equals(df)


def test_rename_leaves_unknown_values_unchanged(config, make_table):
    df = make_table({"Sex": ["m", "f", "x", None]}, nominal=("Sex",))

    result = NominalRenameStrategy(config, {"Sex": {"m": "0", "f": "1"}}).process(df)

    assert list(as_text(result["Sex"]).fillna("?")) == ["0", "1", "x", "?"]
    assert nominal_values(result["Sex"]) == ["0", "1", "x"]


def test_rename_skips_absent_column(config, make_table):
    df = make_table({"ALB": [1.0]})

    result = NominalRenameStrategy(config).process(df)

    assert list(result.columns) == ["ALB"]


def test_drop_of_absent_column_is_noop(config, make_table):
    df = make_table(
        {"Category": ["0", "1"], "ALB": [1.0, None]},
        nominal=("Category",),
    )

    result = ColumnRemovalStrategy(config, ["Nope"]).process(df)

    assert result.equals(df)
    assert list(result.columns) == list(df.columns)
    assert len(result) == len(df)


def test_drop_order_does_not_matter(config, make_table):
    df = make_table({"A": [1.0], "B": [2.0], "C": [3.0], "D": [4.0]})

    forward = ColumnRemovalStrategy(config, ["A", "C", "Nope"]).process(df)
    backward = ColumnRemovalStrategy(config, ["Nope", "C", "A"]).process(df)

    assert list(forward.columns) == ["B", "D"]
    assert forward.equals(backward)


def test_drop_is_idempotent(config, make_table):
    df = make_table({"A": [1.0], "B": [2.0]})
    strategy = ColumnRemovalStrategy(config, ["A"])

    once = strategy.process(df)
    twice = strategy.process(once)

    assert twice.equals(once)


def test_column_filter_drops_rows_missing_in_that_column(make_table):
    df = make_table({"A": [1.0, None, 3.0], "B": [None, 2.0, 3.0]})

    result = ColumnMissingFilter("A")(df)

    assert result["A"].tolist() == [1.0, 3.0]


def test_missing_value_filter_keeps_complete_cases(config, make_table):
    df = make_table(
        {
            "Category": ["0", "1", None, "1", "0"],
            "Age": [32.0, None, 40.0, 51.0, 47.0],
            "ALB": [38.5, 41.0, 39.0, None, 40.1],
        },
        nominal=("Category",),
    )

    result = MissingValueFilterStrategy(config).process(df)

    assert not result.isna().any().any()
    assert result["Age"].tolist() == [32.0, 47.0]
    assert list(result.index) == [0, 1]


def test_compaction_drops_values_that_no_longer_occur(config, make_table):
    df = make_table({"Sex": ["0", "1", None], "Age": [1.0, None, 3.0]}, nominal=("Sex",))
    filtered = MissingValueFilterStrategy(config).process(df)

    assert nominal_values(filtered["Sex"]) == ["0", "1"]

    result = CompactionStrategy(config).process(filtered)

    assert nominal_values(result["Sex"]) == ["0"]


def test_factory_rejects_unknown_and_duplicate_strategies(config):
    factory = PreprocessingStrategyFactory(config)

    with pytest.raises(ValueError):
        factory.get_strategy("does_not_exist")
    with pytest.raises(ValueError):
        factory.register("compaction", CompactionStrategy(config))


def test_factory_reads_user_columns_from_config(config):
    config.set_config("drop_columns", ["ALB", "BIL"])

    strategy = PreprocessingStrategyFactory(config).get_strategy("user_column_removal")

    assert strategy.columns == ["ALB", "BIL"]


def test_pipeline_runs_steps_in_order(config, make_table):
    df = make_table(
        {"Category": ["0s", "3", "1"], "Sex": ["f", "m", "f"], "Age": [30.0, None, 50.0]},
        nominal=("Category", "Sex"),
    )
    factory = PreprocessingStrategyFactory(config)
    pipeline = PreprocessingPipeline(config)
    for name in ("label_normalization", "value_renames", "missing_value_filter", "compaction"):
        pipeline.add_step(PreprocessingPipelineStep(factory.get_strategy(name)))

    result = pipeline.process(df)

    assert [step.name for step in pipeline.steps] == [
        "LabelNormalizationStrategy",
        "NominalRenameStrategy",
        "MissingValueFilterStrategy",
        "CompactionStrategy",
    ]
    assert list(as_text(result["Category"])) == ["0", "1"]
    assert list(as_text(result["Sex"])) == ["1", "1"]
    assert nominal_values(result["Sex"]) == ["1"]


def test_pipeline_propagates_step_errors(config, make_table):
    df = make_table({"Category": ["7"]}, nominal=("Category",))
    pipeline = PreprocessingPipeline(config)
    pipeline.add_step(PreprocessingPipelineStep(LabelNormalizationStrategy(config)))

    with pytest.raises(UnmappedValueError):
        pipeline.process(df)


def test_parse_column_list():
    assert parse_column_list(None) == []
    assert parse_column_list("") == []
    assert parse_column_list(" ALB, ,BIL ,") == ["ALB", "BIL"]


def test_as_text_renders_integral_floats_without_decimals():
    assert as_text(pd.Series([0.0, 1.0, None])).tolist()[:2] == ["0", "1"]
