from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from configuration import Configuration


@pytest.fixture()
def config(tmp_path: Path) -> Configuration:
    cfg = Configuration(root_dir=str(tmp_path), log_to_file=False)
    cfg.set_config("n_jobs", 1)
    return cfg


def _nominal(values, categories=None) -> pd.Categorical:
    if categories is None:
        categories = list(dict.fromkeys(v for v in values if v is not None))
    return pd.Categorical(values, categories=categories)


@pytest.fixture()
def make_table():
    """Build a table from plain lists; ``nominal`` names the categorical columns."""

    def _make(columns: dict, nominal=(), relation: str = "hepatitis_test") -> pd.DataFrame:
        data = {}
        for name, values in columns.items():
            if name in nominal:
                data[name] = _nominal(values)
            else:
                data[name] = pd.Series(values, dtype=float)
        df = pd.DataFrame(data)
        df.attrs["relation"] = relation
        return df

    return _make


@pytest.fixture()
def training_table() -> pd.DataFrame:
    """Two well separated classes: ALB below 10 is class 0, above 20 is class 1."""
    alb = [float(i % 10) for i in range(20)] + [20.0 + i % 10 for i in range(20)]
    sex = ["0" if i % 2 else "1" for i in range(40)]
    labels = ["0"] * 20 + ["1"] * 20
    df = pd.DataFrame({
        "Sex": pd.Categorical(sex, categories=["0", "1"]),
        "ALB": np.asarray(alb),
        "Category": pd.Categorical(labels, categories=["0", "1"]),
    })
    df.attrs["relation"] = "hepatitis_test"
    return df
