#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
ForestFactory Preprocessing Engine
==================================

This module is the entry point of the preprocessing tool. It loads the
Hepatitis C dataset, cleans it and writes the result in the ARFF format that
the training tool consumes.

The steps run once, in this order:

1. Data Loading - CSV (with a configurable missing-value token) or ARFF
2. Label Normalization - Merge the 'Category' classes into 0 / 1
3. Value Renames - Convert 'Sex' from m/f to 0/1
4. Column Removal - Index column, user columns, low-value preset
5. Missing Value Filter - Keep complete cases only
6. Compaction - Drop nominal values that no longer occur
7. Saving - Write <output>.arff

Any failure aborts the run; nothing is written unless every step succeeded.

Components
----------
- DataCleaningStep: Runs the preprocessing pipeline as one engine step
- PipelineExecutor: Loads, runs the steps and saves
- PipelineFactory: Builds the pipeline from the run configuration

Usage
-----
python engine.py <filename> [--drop-useless] [--drop-columns=A,B] [--output=<path>]
                 [--config config.yaml] [--root project_root] [--loglevel {DEBUG,INFO}]

Example
-------
python engine.py ../data/HepatitisCdata.csv --drop-useless --output=../data/HepatitisCdata_v2_processed.arff
"""

__version__ = "1.0"

#=================================================

import sys
from pathlib import Path
from typing import List, Optional, Tuple
import pandas as pd

from interfaces import IConfigProvider, IPipelineStep
from configuration import Configuration, ToolArgumentParser, add_common_arguments, initialize_runtime
from exceptions import ArgumentError, ForestFactoryError
from processors import PreprocessingPipeline, PreprocessingStrategyFactory, PreprocessingPipelineStep, parse_column_list
from tables import DataLoader, DataSaver, resolve_processed_path



#========= 1. Pipeline Steps ==========
class DataCleaningStep(IPipelineStep):
	"""The whole cleaning pipeline as one stage of the executor."""

	def __init__(self, config_provider: IConfigProvider, cleaning_pipeline: PreprocessingPipeline):
		self._logger = config_provider.get_logger()
		self._pipeline = cleaning_pipeline

	@property
	def name(self) -> str:
		return 'DataCleaning'

	def execute(self, df: pd.DataFrame) -> pd.DataFrame:
		self._logger.info(f"Cleaning {len(df)} rows with {len(self._pipeline.steps)} steps")
		return self._pipeline.process(df)


#========= 2. Pipeline Orchestration ==========
class PipelineExecutor:
	"""Load a table, run the stages, write the result.

	Nothing is written unless every stage succeeded.
	"""

	def __init__(self, config_provider: IConfigProvider):
		self._logger = config_provider.get_logger()
		self._stages: List[IPipelineStep] = []
		self._loader = DataLoader(config_provider)
		self._saver = DataSaver(config_provider)

	def add_step(self, step: IPipelineStep) -> 'PipelineExecutor':
		self._stages.append(step)
		return self

	def execute(self, input_path: Path, output_path: Path) -> Tuple[Path, pd.DataFrame]:
		"""Return the path written and the final table."""
		self._logger.info('Loading dataset ...')
		df = self._loader.load(input_path)
		relation = df.attrs.get('relation', Path(input_path).stem)

		for stage in self._stages:
			started = pd.Timestamp.now()
			df = stage.execute(df)
			seconds = (pd.Timestamp.now() - started).total_seconds()
			self._logger.info(f"{stage.name} finished in {seconds:.2f} s")

		# attrs do not survive every pandas operation
		df.attrs['relation'] = relation
		self._logger.info(f"Final dataset: {len(df)} rows, {len(df.columns)} columns")

		self._logger.info(f"Saving to {output_path}")
		return self._saver.save(df, output_path), df


class PipelineFactory:
	"""Builds the executor for the flags of the current run."""

	# Cleaning order; None marks a step that always runs
	STEPS = (
		('label_normalization', None),
		('value_renames', None),
		('index_column_removal', None),
		('user_column_removal', 'drop_columns'),
		('useless_column_removal', 'drop_useless'),
		('missing_value_filter', None),
		('compaction', None),
	)

	def __init__(self, config_provider: IConfigProvider):
		self._config = config_provider
		self._logger = config_provider.get_logger()

	def create_pipeline(self) -> PipelineExecutor:
		executor = PipelineExecutor(self._config)
		executor.add_step(DataCleaningStep(self._config, self._create_cleaning_pipeline()))
		return executor

	def _create_cleaning_pipeline(self) -> PreprocessingPipeline:
		strategies = PreprocessingStrategyFactory(self._config)
		cleaning = PreprocessingPipeline(self._config)

		for key, flag in self.STEPS:
			if flag and not self._config.get_config(flag):
				continue
			cleaning.add_step(PreprocessingPipelineStep(strategies.get_strategy(key)))

		return cleaning


def run_preprocessing(config: IConfigProvider, input_path: Path, output: Optional[str] = None) -> Tuple[Path, pd.DataFrame]:
	"""Preprocess one dataset file and return the written path and the table."""
	input_path = Path(input_path)
	config.set_config('current_dataset', input_path.stem)
	output_path = resolve_processed_path(
		input_path,
		output,
		extension=config.get_config('native_extension', '.arff'),
		suffix=config.get_config('processed_suffix', '_processed')
	)
	pipeline = PipelineFactory(config).create_pipeline()
	return pipeline.execute(input_path, output_path)



#========= 3. Main Entrypoint ==========
def parse_arguments(argv: Optional[List[str]] = None):
	"""Parse command line arguments"""
	parser = ToolArgumentParser(prog='forest-preprocess', description='Hepatitis C Dataset Preprocessing')
	parser.add_argument(
		'filename',
		type=str,
		help='The dataset to preprocess (.csv or .arff)'
	)
	parser.add_argument(
		'--drop-useless',
		action='store_true',
		help='Drop the columns with a low contribution to the model'
	)
	parser.add_argument(
		'--drop-columns',
		type=str,
		default=None,
		help='Comma-separated list of columns to drop'
	)
	parser.add_argument(
		'--output',
		type=str,
		default=None,
		help='Output file path (default: <filename>_processed.arff)'
	)
	add_common_arguments(parser)

	return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
	try:
		args = parse_arguments(argv)
	except ArgumentError as e:
		print(f"ERROR: {e}", file=sys.stderr)
		return 1

	prompt = f"ForestFactory Preprocessing Version: {__version__}"
	print('-' * len(prompt), f"\n{prompt}\n", '-' * len(prompt), sep='')

	initialize_runtime()
	config = Configuration(args.config, args.root, args.loglevel)
	logger = config.get_logger()

	config.set_config('drop_useless', args.drop_useless)
	config.set_config('drop_columns', parse_column_list(args.drop_columns))

	try:
		output_path, df = run_preprocessing(config, Path(args.filename), args.output)
	except ForestFactoryError as e:
		logger.error(f"Preprocessing failed: {e}")
		print(f"ERROR: {e}", file=sys.stderr)
		return 1

	logger.info(f"Preprocessed dataset written to {output_path} ({len(df)} rows)")
	return 0


if __name__ == '__main__':
	sys.exit(main())
