#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
ForestFactory Configuration Management
======================================

This module provides the configuration system shared by the preprocessing
and training tools. It loads settings from a YAML file, establishes defaults
for the Hepatitis C dataset, and sets up logging.

The module implements the IConfigProvider interface, offering a centralized
configuration repository that every component receives at construction time.

Contents
--------
- initialize_runtime: once-per-process warning filters and pandas options
- Configuration: Hepatitis C defaults, YAML overrides, console and dated log file
- ToolArgumentParser: argparse front end raising ArgumentError

Example
-------
initialize_runtime()
config = Configuration("config.yaml", root_dir="/data/hepatitis", loglevel="DEBUG")
folds = config.get_config("cv_folds")
"""

#=================================================

import argparse
import logging
import sys
import warnings
import yaml
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
import pandas as pd

from exceptions import ArgumentError
from interfaces import IConfigProvider


_RUNTIME_INITIALIZED = False


def initialize_runtime() -> bool:
	"""Perform process-wide setup once.

	Installs warning filters and pandas display options. Subsequent calls
	are no-ops. Returns True when this call did the initialization.
	"""
	global _RUNTIME_INITIALIZED
	if _RUNTIME_INITIALIZED:
		return False

	warnings.filterwarnings('ignore', category=FutureWarning)
	pd.set_option('display.width', 120)
	pd.set_option('display.max_columns', 50)

	_RUNTIME_INITIALIZED = True
	return True


class DatasetFilter(logging.Filter):
	"""Add the current dataset name to log records."""

	def __init__(self, config: IConfigProvider):
		super().__init__()
		self.config = config

	def filter(self, record):
		if not getattr(record, 'dataset', None):
			record.dataset = self.config.get_config('current_dataset', '') or 'System'
		return True


class Configuration(IConfigProvider):
	"""Settings of one tool run: built-in defaults overlaid with a YAML file."""

	MODULE_DIR = Path(__file__).parent
	# Source checkout first, then the data directory of an installed package
	SEARCH_DIRS = (MODULE_DIR, Path(sys.prefix) / 'share' / 'forestfactory')
	LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(dataset)s] - %(message)s'
	SECTIONS = ('Engine_Parameters', 'Dataset')

	def __init__(self, config_path: Optional[str] = None, root_dir: Optional[str] = None, loglevel: Optional[str] = None, log_to_file: bool = True) -> None:
		# Relative paths in the configuration resolve against the root
		self._root = Path(root_dir).resolve() if root_dir else Path.cwd()
		self._config_path = self._resolve_config_path(config_path)
		self._log_to_file = log_to_file
		self._logger = None

		self._config = {'root_dir': str(self._root)}
		self._config.update(self._load_default_config())

		# Logging is configured before the file is read so load problems get reported
		self._initialize_logging(loglevel)
		self.load_from_file()

	def _resolve_config_path(self, config_path: Optional[str]) -> Path:
		"""A relative name that does not exist here is searched in SEARCH_DIRS."""
		candidate = Path(config_path or 'config.yaml')
		if candidate.is_absolute() or candidate.exists():
			return candidate
		for directory in self.SEARCH_DIRS:
			if (directory / candidate).exists():
				return directory / candidate
		return self.MODULE_DIR / candidate

	def _initialize_logging(self, loglevel: Optional[str] = None) -> None:
		"""Install the console and dated file handlers once per process."""
		dataset_filter = DatasetFilter(self)

		if not logging.root.handlers:
			handlers = [logging.StreamHandler()]
			if self._config.get('log_to_file', True):
				log_dir = Path(self._config.get('log_dir', self._root / 'Logs'))
				log_dir.mkdir(parents=True, exist_ok=True)
				handlers.append(logging.FileHandler(log_dir / f"{datetime.now():%Y-%m-%d}_ForestFactory.log"))

			for handler in handlers:
				handler.addFilter(dataset_filter)
			logging.basicConfig(level=logging.INFO, format=self.LOG_FORMAT, handlers=handlers)

		self._logger = logging.getLogger(__name__)
		# A new run replaces the filter of an earlier Configuration
		for stale in [f for f in self._logger.filters if isinstance(f, DatasetFilter)]:
			self._logger.removeFilter(stale)
		self._logger.addFilter(dataset_filter)

		debug = bool(loglevel) and loglevel.upper() == 'DEBUG'
		self._logger.setLevel(logging.DEBUG if debug else logging.INFO)

	def _load_default_config(self) -> Dict[str, Any]:
		"""Hepatitis C dataset defaults."""
		return {
			# Directories
			'log_dir': self._root / 'Logs',
			'report_dir': self._root / 'Reports',
			'log_to_file': self._log_to_file,

			# Loading
			'missing_value_token': 'NA',
			'csv_nominal_columns': ['Category', 'Sex'],

			# Label normalization
			'label_column': 'Category',
			'label_mapping': {
				'0=Blood Donor': '0',
				'0s=suspect Blood Donor': '0',
				'1=Hepatitis': '1',
				'2=Fibrosis': '1',
				'3=Cirrhosis': '1',
				'0': '0',
				'0s': '0',
				'1': '1',
				'2': '1',
				'3': '1',
			},
			'value_renames': {'Sex': {'m': '0', 'f': '1'}},

			# Column removal
			'index_columns': ['Unnamed: 0', 'Unnamed:0'],
			'useless_columns': ['Sex', 'Age', 'PROT', 'CREA', 'CHOL'],

			# Output naming
			'native_extension': '.arff',
			'processed_suffix': '_processed',
			'model_extension': '.model',

			# Random Forest and cross-validation
			'rf_num_features': 0,
			'rf_max_depth': 3,
			'rf_num_trees': 300,
			'rf_seed': 1,
			'cv_folds': 10,
			'cv_seed': 0,
			'num_decimal_places': 3,
			'n_jobs': -1,
		}

	def get_logger(self) -> logging.Logger:
		return self._logger

	def get_config(self, key: str, default=None) -> Any:
		return self._config.get(key, default)

	def set_config(self, key: str, value: Any) -> None:
		self._config[key] = value

	def get_all_config(self) -> Dict[str, Any]:
		"""Snapshot of every setting."""
		return self._config.copy()

	def load_from_file(self, config_path: Optional[str] = None) -> bool:
		"""Overlay the settings of a YAML file; returns False when nothing was read.

		Every document of the file is merged. Keys inside the known sections are
		lifted to the top level, and ``*_dir``/``*_path`` values in them are
		resolved against the root directory.
		"""
		path = Path(config_path) if config_path else self._config_path
		if not path.exists():
			self._logger.warning(f"Config file not found: {path}. Using defaults.")
			return False

		try:
			with open(path, 'r') as f:
				documents = [doc for doc in yaml.safe_load_all(f) if doc]
		except (OSError, yaml.YAMLError) as e:
			self._logger.error(f"Could not read config {path}: {e}")
			return False

		settings: Dict[str, Any] = {}
		for doc in documents:
			settings.update(doc)

		for section in self.SECTIONS:
			values = settings.pop(section, None)
			if not isinstance(values, dict):
				continue
			for key, value in values.items():
				if isinstance(value, str) and key.endswith(('_dir', '_path')):
					value = self._root / value
				settings[key] = value

		self._config.update(settings)
		self._logger.info(f"Settings loaded from {path}")
		return True


class ToolArgumentParser(argparse.ArgumentParser):
	"""Argument parser that raises ArgumentError instead of exiting."""

	def __init__(self, *args, **kwargs):
		kwargs.setdefault('allow_abbrev', False)
		super().__init__(*args, **kwargs)

	def error(self, message):
		raise ArgumentError(f"{self.prog}: {message}")


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
	"""Options shared by both tools."""
	parser.add_argument(
		'--config',
		type=str,
		default='config.yaml',
		help='Path to configuration file'
	)
	parser.add_argument(
		'--root',
		type=str,
		help='Root directory for logs and reports (defaults to the working directory)'
	)
	parser.add_argument(
		'--loglevel',
		type=str,
		default='INFO',
		choices=['DEBUG', 'INFO'],
		help='Set the logging level (default: INFO)'
	)
