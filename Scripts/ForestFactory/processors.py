#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Hepatitis C Dataset Preprocessing Framework
===========================================

This module implements the cleaning steps applied to the Hepatitis C dataset
before a Random Forest is trained on it. Each step is a preprocessing
strategy; the strategies are created by a factory, wrapped into pipeline
steps and executed in order by a preprocessing pipeline.

Operations
----------
- Label Normalization: Collapse the label categories with a strict many-to-one map
- Value Renames: Advisory renames of nominal values (e.g. Sex m/f to 0/1)
- Column Removal: Drop columns by name; absent names are skipped
- Missing Value Filter: Keep complete cases only, one column at a time
- Compaction: Remove nominal values that no longer occur

Example
-------
from processors import PreprocessingStrategyFactory, PreprocessingPipeline, PreprocessingPipelineStep

config = Configuration()
factory = PreprocessingStrategyFactory(config)
pipeline = PreprocessingPipeline(config)
pipeline.add_step(PreprocessingPipelineStep(factory.get_strategy('label_normalization')))
pipeline.add_step(PreprocessingPipelineStep(factory.get_strategy('missing_value_filter')))
cleaned = pipeline.process(df)
"""

#=================================================

from __future__ import annotations
from abc import abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional
import pandas as pd

from exceptions import UnmappedValueError
from interfaces import IConfigProvider, IPipelineStep, IDataPreprocessingStrategy
from tables import NOMINAL, column_kind, format_value, to_nominal


def as_text(series: pd.Series) -> pd.Series:
	"""Cell values as strings, keeping missing cells missing."""
	return to_nominal(series).astype(object).map(format_value, na_action='ignore')


def parse_column_list(text: Optional[str]) -> List[str]:
	"""Split a comma-separated column list, ignoring blanks."""
	if not text:
		return []
	return [name.strip() for name in text.split(',') if name.strip()]


#======= 1. Preprocessing Strategies =======
class PreprocessingStrategy(IDataPreprocessingStrategy):
	"""Common state of the cleaning operations: settings and run logger."""

	def __init__(self, config_provider: IConfigProvider):
		self._config = config_provider
		self._logger = config_provider.get_logger()

	@property
	def name(self) -> str:
		return type(self).__name__

	@abstractmethod
	def process(self, df: pd.DataFrame) -> pd.DataFrame:
		pass

	def _log_changes(self, change_count: int, message: str) -> None:
		if change_count:
			self._logger.debug(f"{self.name}: {change_count} {message}")


class LabelNormalizationStrategy(PreprocessingStrategy):
	"""Collapse fine-grained label categories into coarse ones.

	Every value present in the label column must have an entry in the
	mapping. The declared value set of the column becomes the distinct
	target values of the mapping, in mapping order.
	"""

	def __init__(self, config_provider: IConfigProvider, column: Optional[str] = None,
				 mapping: Optional[Mapping[str, str]] = None):
		super().__init__(config_provider)
		self._column = column or config_provider.get_config('label_column', 'Category')
		if mapping is None:
			mapping = config_provider.get_config('label_mapping', {}) or {}
		self._mapping = {str(old): str(new) for old, new in mapping.items()}

	def process(self, df: pd.DataFrame) -> pd.DataFrame:
		if self._column not in df.columns:
			self._logger.warning(f"Label column '{self._column}' not found, skipping normalization")
			return df

		df_copy = df.copy()
		values = as_text(df_copy[self._column])

		present = set(values.dropna().unique())
		unmapped = present - set(self._mapping)
		if unmapped:
			raise UnmappedValueError(self._column, unmapped)

		targets = list(dict.fromkeys(self._mapping.values()))
		mapped = values.map(self._mapping, na_action='ignore')
		df_copy[self._column] = pd.Categorical(mapped, categories=targets)

		changed = int(((mapped != values) & values.notna()).sum())
		self._log_changes(changed, f"values remapped in '{self._column}'")
		self._logger.info(f"Label '{self._column}' normalized to classes {targets}")
		return df_copy


class NominalRenameStrategy(PreprocessingStrategy):
	"""Rename individual nominal values in place.

	Values without an entry are left unchanged. Renaming onto an already
	declared value merges the two.
	"""

	def __init__(self, config_provider: IConfigProvider,
				 renames: Optional[Mapping[str, Mapping[str, str]]] = None):
		super().__init__(config_provider)
		if renames is None:
			renames = config_provider.get_config('value_renames', {}) or {}
		self._renames = {
			column: {str(old): str(new) for old, new in table.items()}
			for column, table in renames.items()
		}

	def process(self, df: pd.DataFrame) -> pd.DataFrame:
		df_copy = df.copy()

		for column, table in self._renames.items():
			if column not in df_copy.columns:
				self._logger.debug(f"Column '{column}' not found, no values renamed")
				continue

			series = to_nominal(df_copy[column])
			categories = [table.get(str(c), str(c)) for c in series.cat.categories]
			text = as_text(series)
			values = text.map(lambda v: table.get(v, v), na_action='ignore')
			df_copy[column] = pd.Categorical(values, categories=list(dict.fromkeys(categories)))

			renamed = int(text.isin(list(table)).sum())
			self._log_changes(renamed, f"values renamed in '{column}'")

		return df_copy


class ColumnRemovalStrategy(PreprocessingStrategy):
	"""Drop columns by name.

	Names are resolved against the current columns before anything is
	deleted, so the order of the requested names does not matter. Names that
	are not present are skipped.
	"""

	def __init__(self, config_provider: IConfigProvider, columns: Iterable[str], label: str = 'ColumnRemoval'):
		super().__init__(config_provider)
		self._columns = list(dict.fromkeys(columns))
		self._label = label

	@property
	def name(self) -> str:
		return self._label

	@property
	def columns(self) -> List[str]:
		return list(self._columns)

	def process(self, df: pd.DataFrame) -> pd.DataFrame:
		present = [col for col in self._columns if col in df.columns]
		skipped = [col for col in self._columns if col not in df.columns]

		if skipped:
			self._logger.debug(f"{self.name}: columns not present, skipped: {skipped}")
		if not present:
			return df

		self._logger.info(f"{self.name}: dropping columns {present}")
		return df.drop(columns=present)


class ColumnMissingFilter:
	"""Remove the rows that have a missing value in one column."""

	def __init__(self, column: str):
		self.column = column

	def __call__(self, df: pd.DataFrame) -> pd.DataFrame:
		return df.loc[df[self.column].notna()]


class MissingValueFilterStrategy(PreprocessingStrategy):
	"""Keep complete cases only.

	One ``ColumnMissingFilter`` is applied per column, in the current column
	order. After all columns are processed no retained cell is missing.
	"""

	def process(self, df: pd.DataFrame) -> pd.DataFrame:
		self._logger.info('Removing records with null values ...')
		rows_before = len(df)

		result = df
		for column_filter in [ColumnMissingFilter(col) for col in df.columns]:
			before = len(result)
			result = column_filter(result)
			self._log_changes(before - len(result), f"rows with missing '{column_filter.column}' removed")

		result = result.reset_index(drop=True)
		self._logger.info(f"Removed {rows_before - len(result)} of {rows_before} rows with missing values")
		return result


class CompactionStrategy(PreprocessingStrategy):
	"""Drop declared nominal values that no longer occur in their column."""

	def process(self, df: pd.DataFrame) -> pd.DataFrame:
		df_copy = df.copy()
		for col in df_copy.columns:
			if column_kind(df_copy[col]) != NOMINAL:
				continue
			before = len(df_copy[col].cat.categories)
			df_copy[col] = df_copy[col].cat.remove_unused_categories()
			self._log_changes(before - len(df_copy[col].cat.categories), f"unused values removed from '{col}'")
		return df_copy


#======= 2. Strategy Factory =======
class PreprocessingStrategyFactory:
	"""Registry of the cleaning operations, built from the run settings.

	Keys: ``label_normalization``, ``value_renames``, ``index_column_removal``,
	``user_column_removal``, ``useless_column_removal``,
	``missing_value_filter`` and ``compaction``.
	"""

	def __init__(self, config_provider: IConfigProvider):
		self._config = config_provider
		self._logger = config_provider.get_logger()
		self._strategies: Dict[str, PreprocessingStrategy] = {}
		self._initialize_strategies()

	def _initialize_strategies(self) -> None:
		removals = {
			'index_column_removal': ('index_columns', 'IndexColumnRemoval'),
			'user_column_removal': ('drop_columns', 'UserColumnRemoval'),
			'useless_column_removal': ('useless_columns', 'UselessColumnRemoval'),
		}

		self.register('label_normalization', LabelNormalizationStrategy(self._config))
		self.register('value_renames', NominalRenameStrategy(self._config))
		for key, (setting, label) in removals.items():
			columns = self._config.get_config(setting, []) or []
			self.register(key, ColumnRemovalStrategy(self._config, columns, label))
		self.register('missing_value_filter', MissingValueFilterStrategy(self._config))
		self.register('compaction', CompactionStrategy(self._config))

	def register(self, name: str, strategy: PreprocessingStrategy) -> None:
		if name in self._strategies:
			raise ValueError(f"Strategy {name} already registered")
		self._strategies[name] = strategy

	def get_strategy(self, name: str) -> PreprocessingStrategy:
		try:
			return self._strategies[name]
		except KeyError:
			raise ValueError(f"Unknown preprocessing strategy: {name}") from None



################################################
#======= 3. Preprocessing Pipeline Steps =======
class PreprocessingPipelineStep(IPipelineStep):
	"""Adapts a cleaning operation to the pipeline step interface."""

	def __init__(self, strategy: PreprocessingStrategy):
		self._strategy = strategy

	@property
	def name(self) -> str:
		return self._strategy.name

	def execute(self, df: pd.DataFrame) -> pd.DataFrame:
		return self._strategy.process(df)


#======= 4. Preprocessing Pipeline =======
class PreprocessingPipeline:
	"""Runs cleaning steps one after the other; the first failure aborts the run."""

	def __init__(self, config_provider: IConfigProvider):
		self._config = config_provider
		self._logger = config_provider.get_logger()
		self._steps: List[IPipelineStep] = []

	@property
	def steps(self) -> List[IPipelineStep]:
		return list(self._steps)

	def add_step(self, step: IPipelineStep) -> PreprocessingPipeline:
		self._steps.append(step)
		return self

	def process(self, df: pd.DataFrame) -> pd.DataFrame:
		"""Return the table produced by the last step."""
		result = df
		total = len(self._steps)

		for position, step in enumerate(self._steps, start=1):
			started = datetime.now()
			self._logger.info(f"Cleaning step {position}/{total}: {step.name}")
			try:
				result = step.execute(result)
			except Exception as e:
				self._logger.error(f"Cleaning step {step.name} failed: {e}")
				raise

			elapsed_ms = (datetime.now() - started).total_seconds() * 1000
			self._logger.debug(f"{step.name}: {len(result)} rows, {len(result.columns)} columns after {elapsed_ms:.1f} ms")

		if result.empty:
			self._logger.warning('Preprocessing removed every row from the dataset')

		return result
