#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Table I/O shared by the preprocessing and training tools
========================================================

A table is a pandas DataFrame whose columns carry one of three kinds:

- nominal: ``CategoricalDtype``; the categories are the declared value set
- numeric: any numeric dtype
- string: everything else

Missing cells are NaN/None. The relation name of the table travels in
``df.attrs['relation']`` so it survives a load/save cycle.

Delimited text is read with pandas; the native ARFF format is read and
written with the liac-arff codec.
"""

#=================================================

import csv
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO, Union

import arff
import numpy as np
import pandas as pd
from pandas.api.types import is_numeric_dtype

from exceptions import LoadError, WriteError
from interfaces import IConfigProvider, IDataLoader, IDataSaver


NUMERIC = 'numeric'
NOMINAL = 'nominal'
STRING = 'string'

ARFF_NUMERIC_TYPES = ('NUMERIC', 'REAL', 'INTEGER')


def column_kind(series: pd.Series) -> str:
	"""Return the declared kind of a table column."""
	if isinstance(series.dtype, pd.CategoricalDtype):
		return NOMINAL
	if is_numeric_dtype(series.dtype):
		return NUMERIC
	return STRING


def nominal_values(series: pd.Series) -> List[str]:
	"""Declared value set of a nominal column."""
	return [str(value) for value in series.cat.categories]


def to_nominal(series: pd.Series) -> pd.Series:
	"""Convert a column to nominal, declaring values in order of first appearance."""
	if column_kind(series) == NOMINAL:
		return series
	text = series.map(format_value, na_action='ignore')
	categories = pd.unique(text.dropna())
	return pd.Series(
		pd.Categorical(text, categories=categories),
		index=series.index,
		name=series.name
	)


def format_value(value: Any) -> str:
	"""Render a cell as text; integral floats lose their trailing '.0'."""
	if isinstance(value, float) and value.is_integer():
		return str(int(value))
	return str(value)


def _is_missing(value: Any) -> bool:
	return value is None or (isinstance(value, float) and np.isnan(value))


def resolve_processed_path(input_path: Union[str, Path], output: Optional[Union[str, Path]] = None,
						   extension: str = '.arff', suffix: str = '_processed') -> Path:
	"""Resolve where the preprocessed table is written.

	An explicit output keeps its name but has its extension replaced with the
	native one. Without one, the input name is reused: ``data.csv`` becomes
	``data_processed.arff``.
	"""
	if output:
		output_path = Path(output)
		if output_path.suffix.lower() != extension.lower():
			output_path = output_path.with_suffix(extension)
		return output_path

	input_path = Path(input_path)
	return input_path.with_name(f"{input_path.stem}{suffix}{extension}")


def resolve_model_path(output: Union[str, Path], extension: str = '.model') -> Path:
	"""Append the model extension when the path does not already end with it."""
	output = str(output)
	if not output.endswith(extension):
		output += extension
	return Path(output)


#========= 1. Loading ==========
class DataLoader(IDataLoader):
	"""Loads tables from delimited text or ARFF files."""

	def __init__(self, config_provider: IConfigProvider):
		self._config = config_provider
		self._logger = config_provider.get_logger()
		self._missing_token = config_provider.get_config('missing_value_token', 'NA')
		self._nominal_columns = set(config_provider.get_config('csv_nominal_columns', []) or [])

	def load(self, data_path: Union[str, Path]) -> pd.DataFrame:
		"""Load a table from a file path."""
		data_path = Path(data_path)
		if not data_path.is_file():
			raise LoadError(f"Dataset not found: {data_path}")

		self._logger.debug(f"Loading data from {data_path}")
		if data_path.suffix.lower() == '.csv':
			df = self._load_csv(data_path)
		else:
			df = self._load_arff(data_path)

		self._logger.info(f"Successfully loaded {len(df)} rows and {len(df.columns)} columns from {data_path.name}")
		return df

	def _load_csv(self, data_path: Path) -> pd.DataFrame:
		"""Read delimited text, treating the missing-value token and empty fields as absent data."""
		try:
			with open(data_path, 'r', encoding='utf-8', newline='') as f:
				self._check_row_widths(f, data_path)
				f.seek(0)
				raw = pd.read_csv(
					f,
					dtype=str,
					keep_default_na=False,
					na_values=[self._missing_token, '']
				)
		except (OSError, UnicodeDecodeError, csv.Error, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
			raise LoadError(f"Could not parse {data_path}: {e}") from e

		columns = {}
		for col in raw.columns:
			series = raw[col]
			if col not in self._nominal_columns:
				try:
					columns[col] = pd.to_numeric(series)
					continue
				except (ValueError, TypeError):
					pass
			columns[col] = to_nominal(series)

		df = pd.DataFrame(columns, index=raw.index)
		df.attrs['relation'] = data_path.stem
		return df

	@staticmethod
	def _check_row_widths(handle: TextIO, data_path: Path) -> None:
		"""Every record must have as many fields as the header.

		pandas pads short rows with missing values, so they are counted here.
		"""
		reader = csv.reader(handle)
		header = next(reader, None)
		if header is None:
			return
		for record in reader:
			# blank lines are skipped by read_csv as well
			if record and len(record) != len(header):
				raise LoadError(
					f"Could not parse {data_path}: line {reader.line_num}: "
					f"expected {len(header)} fields, got {len(record)}"
				)

	def _load_arff(self, data_path: Path) -> pd.DataFrame:
		"""Read an ARFF file; nominal attributes keep their declared value order."""
		try:
			with open(data_path, 'r', encoding='utf-8') as f:
				payload = arff.load(f)
		except (OSError, UnicodeDecodeError, arff.ArffException) as e:
			raise LoadError(f"Could not parse {data_path} as ARFF: {e}") from e

		names = [name for name, _ in payload['attributes']]
		raw = pd.DataFrame(payload['data'], columns=names, dtype=object)

		columns = {}
		for name, attr_type in payload['attributes']:
			series = raw[name]
			if isinstance(attr_type, (list, tuple)):
				columns[name] = pd.Series(
					pd.Categorical(series, categories=[str(v) for v in attr_type]),
					index=raw.index,
					name=name
				)
			elif str(attr_type).upper() in ARFF_NUMERIC_TYPES:
				columns[name] = pd.to_numeric(series).astype(float)
			else:
				columns[name] = series.astype(object)

		df = pd.DataFrame(columns, index=raw.index)
		df.attrs['relation'] = payload.get('relation') or data_path.stem
		return df


#========= 2. Saving ==========
class DataSaver(IDataSaver):
	"""Writes tables in the ARFF format."""

	def __init__(self, config_provider: IConfigProvider):
		self._config = config_provider
		self._logger = config_provider.get_logger()

	def save(self, df: pd.DataFrame, output_path: Union[str, Path]) -> Path:
		"""Serialize the table to an ARFF file."""
		output_path = Path(output_path)
		self._logger.info(f"Saving data to {output_path}")

		payload = self.to_arff_payload(df, relation=df.attrs.get('relation') or output_path.stem)
		try:
			output_path.parent.mkdir(parents=True, exist_ok=True)
			with open(output_path, 'w', encoding='utf-8') as f:
				arff.dump(payload, f)
		except (OSError, arff.ArffException) as e:
			raise WriteError(f"Error saving data to {output_path}: {e}") from e

		self._logger.info(f"Successfully saved {len(df)} rows to {output_path.name}")
		return output_path

	@staticmethod
	def to_arff_payload(df: pd.DataFrame, relation: str) -> Dict[str, Any]:
		"""Build the liac-arff document for a table."""
		attributes = []
		kinds = []
		for col in df.columns:
			kind = column_kind(df[col])
			kinds.append(kind)
			if kind == NOMINAL:
				attributes.append((str(col), nominal_values(df[col])))
			elif kind == NUMERIC:
				attributes.append((str(col), 'NUMERIC'))
			else:
				attributes.append((str(col), 'STRING'))

		data = []
		for row in df.itertuples(index=False, name=None):
			encoded = []
			for value, kind in zip(row, kinds):
				if _is_missing(value) or value is pd.NA:
					encoded.append(None)
				elif kind == NUMERIC:
					encoded.append(value.item() if isinstance(value, np.generic) else value)
				else:
					encoded.append(str(value))
			data.append(encoded)

		return {
			'relation': relation,
			'description': '',
			'attributes': attributes,
			'data': data,
		}
