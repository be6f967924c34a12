#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""Interfaces for the preprocessing and training components."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
import pandas as pd



class IConfigProvider(ABC):
	"""Settings shared by every component of a run, plus the run logger."""

	@abstractmethod
	def get_logger(self) -> Any:
		"""Logger that tags records with the current dataset."""
		pass

	@abstractmethod
	def get_config(self, key: str, default: Any = None) -> Any:
		"""Value of a setting, or ``default`` when unset."""
		pass

	@abstractmethod
	def set_config(self, key: str, value: Any) -> None:
		"""Override a setting for the rest of the run."""
		pass

class IDataLoader(ABC):
	"""Reads a table file."""
	@abstractmethod
	def load(self, data_path: Path) -> pd.DataFrame:
		"""Return the table stored at ``data_path``."""
		pass

class IDataSaver(ABC):
	"""Writes a table file."""
	@abstractmethod
	def save(self, df: pd.DataFrame, output_path: Path) -> Path:
		"""Write the table and return the path written."""
		pass


class IDataPreprocessingStrategy(ABC):
	"""One cleaning operation on a table."""
	@abstractmethod
	def process(self, df: pd.DataFrame) -> pd.DataFrame:
		"""Return the cleaned table."""
		pass


class IModelReporter(ABC):
	"""Renders the evaluation of a trained model."""

	@abstractmethod
	def generate_report(self, report: Any, model: Any = None) -> Path:
		"""Render an evaluation report and return its location."""
		pass


class IPipelineStep(ABC):
	"""A named stage of a pipeline."""

	@property
	@abstractmethod
	def name(self) -> str:
		"""Step name used in progress logs."""
		pass

	@abstractmethod
	def execute(self, df: pd.DataFrame) -> pd.DataFrame:
		"""Run the stage on a table."""
		pass
