#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
ForestFactory Random Forest Training
====================================

This module is the entry point of the training tool. It loads a preprocessed
dataset, evaluates a Random Forest with stratified k-fold cross-validation,
prints the evaluation and optionally persists a model fitted on the whole
dataset.

Tree building, out-of-bag estimation and the fold assignment are delegated to
scikit-learn. This module only wires the hyperparameters through, encodes the
nominal columns and summarises the cross-validated predictions.

Components
----------
- ForestParameters: Hyperparameters of one run (config defaults, CLI overrides)
- ForestTrainer: Prepares features, cross-validates and fits the classifier
- EvaluationReport: Cross-validation summary, confusion matrix and class details
- ModelReporter: Optional PDF report with the confusion matrix and importances

Usage
-----
python training.py <filename> [-K=<int>] [-depth=<int>] [-I=<int>] [-S=<int>]
                   [-cv_folds=<int>] [-cv_seed=<int>] [--output=<path>] [--report]
                   [--config config.yaml] [--root project_root] [--loglevel {DEBUG,INFO}]

Example
-------
python training.py ../data/HepatitisCdata_v2_processed.arff --output=../model/RandomForest_v1.model -depth=3 -I=100 -S=1 -cv_folds=10 -cv_seed=0

Note
----
The persisted model is fitted on the full dataset after cross-validation, so
it is not the model the reported metrics were measured on.
"""

__version__ = "1.0"

#=================================================

import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union

import joblib
import matplotlib
import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.ensemble import RandomForestClassifier
from sklearn.metrics import cohen_kappa_score, confusion_matrix, precision_recall_fscore_support, roc_auc_score
from sklearn.model_selection import StratifiedKFold, cross_val_predict
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder

from interfaces import IConfigProvider, IModelReporter
from configuration import Configuration, ToolArgumentParser, add_common_arguments, initialize_runtime
from exceptions import ArgumentError, ForestFactoryError, LoadError, TrainingError, WriteError
from processors import as_text
from tables import NOMINAL, NUMERIC, DataLoader, column_kind, format_value, nominal_values, resolve_model_path, to_nominal

# Use a non-interactive backend for saving plots
matplotlib.use('Agg')


#========= 1. Hyperparameters ==========
@dataclass
class ForestParameters:
	"""Random Forest and cross-validation settings of one run.

	``num_features`` 0 selects the library default (square root of the
	number of features); ``max_depth`` 0 means unlimited depth.
	"""
	num_features: int = 0
	max_depth: int = 3
	num_trees: int = 300
	seed: int = 1
	cv_folds: int = 10
	cv_seed: int = 0
	n_jobs: Optional[int] = -1

	@classmethod
	def from_config(cls, config: IConfigProvider, **overrides) -> 'ForestParameters':
		"""Build parameters from configuration; ``None`` overrides are ignored."""
		params = cls(
			num_features=int(config.get_config('rf_num_features', 0)),
			max_depth=int(config.get_config('rf_max_depth', 3)),
			num_trees=int(config.get_config('rf_num_trees', 300)),
			seed=int(config.get_config('rf_seed', 1)),
			cv_folds=int(config.get_config('cv_folds', 10)),
			cv_seed=int(config.get_config('cv_seed', 0)),
			n_jobs=config.get_config('n_jobs', -1),
		)
		for key, value in overrides.items():
			if value is not None:
				setattr(params, key, value)
		params.validate()
		return params

	def validate(self) -> None:
		if self.num_features < 0:
			raise TrainingError(f"-K must be 0 or positive, got {self.num_features}")
		if self.max_depth < 0:
			raise TrainingError(f"-depth must be 0 or positive, got {self.max_depth}")
		if self.num_trees < 1:
			raise TrainingError(f"-I must be at least 1, got {self.num_trees}")
		if self.cv_folds < 2:
			raise TrainingError(f"-cv_folds must be at least 2, got {self.cv_folds}")

	@property
	def max_features(self) -> Union[int, str]:
		return 'sqrt' if self.num_features == 0 else self.num_features

	@property
	def depth_limit(self) -> Optional[int]:
		return None if self.max_depth == 0 else self.max_depth

	def options(self) -> str:
		"""Effective options in command line form."""
		return f"-K {self.num_features} -depth {self.max_depth} -I {self.num_trees} -S {self.seed}"


def build_classifier(features: pd.DataFrame, params: ForestParameters, logger=None) -> Pipeline:
	"""One-hot encode nominal columns, pass numeric ones through, then the forest."""
	nominal, numeric, ignored = [], [], []
	for col in features.columns:
		kind = column_kind(features[col])
		if kind == NOMINAL and len(features[col].cat.categories) > 0:
			nominal.append(col)
		elif kind == NUMERIC:
			numeric.append(col)
		else:
			ignored.append(col)

	if ignored and logger:
		logger.warning(f"Columns not usable as features, ignored: {ignored}")

	transformers = []
	if nominal:
		transformers.append((
			'nominal',
			OneHotEncoder(
				categories=[nominal_values(features[col]) for col in nominal],
				handle_unknown='ignore',
				sparse_output=False
			),
			nominal
		))
	if numeric:
		transformers.append(('numeric', 'passthrough', numeric))
	if not transformers:
		raise TrainingError('Dataset has no usable feature columns')

	return Pipeline([
		('encode', ColumnTransformer(transformers, remainder='drop', verbose_feature_names_out=False)),
		('forest', RandomForestClassifier(
			n_estimators=params.num_trees,
			max_depth=params.depth_limit,
			max_features=params.max_features,
			random_state=params.seed,
			oob_score=True,
			n_jobs=params.n_jobs
		)),
	])



#========= 2. Evaluation Report ==========
def _fmt(value: float, decimals: int) -> str:
	if value is None or np.isnan(value):
		return '?'
	return f"{value:.{decimals}f}"


@dataclass
class EvaluationReport:
	"""Summary of cross-validated predictions."""
	relation: str
	folds: int
	seed: int
	labels: List[str]
	num_attributes: int
	correct: int
	incorrect: int
	kappa: float
	mean_absolute_error: float
	root_mean_squared_error: float
	confusion: np.ndarray
	class_details: pd.DataFrame
	decimals: int = 3
	options: str = ''
	created: datetime = field(default_factory=datetime.now)

	@property
	def num_instances(self) -> int:
		return self.correct + self.incorrect

	@property
	def accuracy(self) -> float:
		return self.correct / self.num_instances if self.num_instances else float('nan')

	@property
	def total_cost(self) -> float:
		"""Cost under a 0/1 cost matrix: one per misclassified instance."""
		return float(self.incorrect)

	@property
	def average_cost(self) -> float:
		return self.total_cost / self.num_instances if self.num_instances else float('nan')

	def summary_string(self) -> str:
		d = self.decimals
		n = self.num_instances
		pct_correct = 100.0 * self.correct / n if n else float('nan')
		pct_incorrect = 100.0 * self.incorrect / n if n else float('nan')
		lines = [
			f"=== {self.folds}-fold Cross-validation ===",
			'',
			f"{'Correctly Classified Instances':<40}{self.correct:>8}{_fmt(pct_correct, 4):>18} %",
			f"{'Incorrectly Classified Instances':<40}{self.incorrect:>8}{_fmt(pct_incorrect, 4):>18} %",
			f"{'Kappa statistic':<40}{_fmt(self.kappa, d):>8}",
			f"{'Mean absolute error':<40}{_fmt(self.mean_absolute_error, d):>8}",
			f"{'Root mean squared error':<40}{_fmt(self.root_mean_squared_error, d):>8}",
			f"{'Total Cost':<40}{_fmt(self.total_cost, d):>8}",
			f"{'Average Cost':<40}{_fmt(self.average_cost, d):>8}",
			f"{'Total Number of Instances':<40}{n:>8}",
		]
		return '\n'.join(lines)

	def matrix_string(self) -> str:
		letters = [self._letter(i) for i in range(len(self.labels))]
		width = max([len(str(v)) for v in self.confusion.flatten()] + [len(l) for l in letters]) + 1
		lines = [
			'=== Confusion Matrix ===',
			'',
			''.join(f"{l:>{width}}" for l in letters) + '   <-- classified as',
		]
		for i, label in enumerate(self.labels):
			row = ''.join(f"{v:>{width}}" for v in self.confusion[i])
			lines.append(f"{row} | {letters[i]:>{width}} = {label}")
		return '\n'.join(lines)

	def class_details_string(self) -> str:
		d = self.decimals
		columns = list(self.class_details.columns)
		lines = [
			'=== Class Details ===',
			'',
			' ' * 14 + ''.join(f"{c:>12}" for c in columns) + '  Class',
		]
		for label, row in self.class_details.iterrows():
			values = ''.join(f"{_fmt(row[c], d):>12}" for c in columns)
			if label == 'Weighted Avg.':
				lines.append(f"{'Weighted Avg.':<14}{values}")
			else:
				lines.append(f"{'':<14}{values}  {label}")
		return '\n'.join(lines)

	def __str__(self) -> str:
		return '\n\n'.join([self.summary_string(), self.matrix_string(), self.class_details_string()])

	@staticmethod
	def _letter(index: int) -> str:
		letters = ''
		index += 1
		while index > 0:
			index, rem = divmod(index - 1, 26)
			letters = chr(ord('a') + rem) + letters
		return letters


def summarize_predictions(y: np.ndarray, proba: np.ndarray, labels: List[str], **report_fields) -> EvaluationReport:
	"""Build an ``EvaluationReport`` from true labels and class probabilities.

	``proba`` has one column per entry of ``labels``. The predicted class is
	the most probable one; ties go to the first declared class.
	"""
	labels = list(labels)
	n, k = len(y), len(labels)
	predicted = np.asarray(labels, dtype=object)[np.argmax(proba, axis=1)] if n else np.array([], dtype=object)
	truth = (np.asarray(y, dtype=object)[:, None] == np.asarray(labels, dtype=object)[None, :]).astype(float)

	correct = int((predicted == y).sum())
	errors = proba - truth
	mae = float(np.abs(errors).sum() / (n * k)) if n and k else float('nan')
	rmse = float(np.sqrt((errors ** 2).sum() / (n * k))) if n and k else float('nan')

	matrix = confusion_matrix(y, predicted, labels=labels)
	if len(set(y)) > 1:
		kappa = float(cohen_kappa_score(y, predicted, labels=labels))
	else:
		kappa = float('nan')

	precision, recall, f1, support = precision_recall_fscore_support(
		y, predicted, labels=labels, zero_division=0
	)

	details = []
	for i in range(k):
		false_pos = matrix[:, i].sum() - matrix[i, i]
		true_neg = n - matrix[i, :].sum() - matrix[:, i].sum() + matrix[i, i]
		fp_rate = false_pos / (false_pos + true_neg) if (false_pos + true_neg) else 0.0
		positives = truth[:, i].sum()
		roc = roc_auc_score(truth[:, i], proba[:, i]) if 0 < positives < n else float('nan')
		details.append({
			'TP Rate': recall[i],
			'FP Rate': fp_rate,
			'Precision': precision[i],
			'Recall': recall[i],
			'F-Measure': f1[i],
			'ROC Area': roc,
		})

	class_details = pd.DataFrame(details, index=labels, dtype=float)
	weights = support / support.sum() if support.sum() else np.zeros(k)
	weighted = {}
	for col in class_details.columns:
		values = class_details[col].to_numpy()
		valid = ~np.isnan(values)
		weighted[col] = float(np.dot(values[valid], weights[valid]) / weights[valid].sum()) if weights[valid].sum() else float('nan')
	class_details.loc['Weighted Avg.'] = pd.Series(weighted)

	return EvaluationReport(
		labels=labels,
		correct=correct,
		incorrect=n - correct,
		kappa=kappa,
		mean_absolute_error=mae,
		root_mean_squared_error=rmse,
		confusion=matrix,
		class_details=class_details,
		**report_fields
	)



#========= 3. Training ==========
class ForestTrainer:
	"""Cross-validates and fits a Random Forest on a table."""

	def __init__(self, config_provider: IConfigProvider, params: ForestParameters):
		self._config = config_provider
		self._logger = config_provider.get_logger()
		self._params = params
		self._label = config_provider.get_config('label_column', 'Category')

	@property
	def params(self) -> ForestParameters:
		return self._params

	def prepare(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, np.ndarray, List[str]]:
		"""Split a table into features, label values and the declared classes."""
		if self._label not in df.columns:
			raise TrainingError(f"Label column '{self._label}' not found in dataset")
		if df.empty:
			raise TrainingError('Dataset has no instances')

		label = to_nominal(df[self._label])
		if label.isna().any():
			self._logger.warning(f"Dropping {int(label.isna().sum())} rows with a missing label")
			df = df.loc[label.notna()]
			label = label.loc[label.notna()]

		features = df.drop(columns=[self._label])
		y = as_text(label).to_numpy(dtype=object)
		return features, y, [format_value(c) for c in label.cat.categories]

	def cross_validate(self, df: pd.DataFrame) -> EvaluationReport:
		"""Stratified k-fold cross-validation of a fresh classifier."""
		features, y, labels = self.prepare(df)
		folds = self._params.cv_folds
		if len(y) < folds:
			raise TrainingError(f"Cannot run {folds}-fold cross-validation on {len(y)} instances")

		classifier = build_classifier(features, self._params, self._logger)
		splitter = StratifiedKFold(n_splits=folds, shuffle=True, random_state=self._params.cv_seed)

		self._logger.info(f"Running {folds}-fold cross-validation (seed {self._params.cv_seed})")
		try:
			fold_proba = cross_val_predict(classifier, features, y, cv=splitter, method='predict_proba')
		except ValueError as e:
			raise TrainingError(f"Cross-validation failed: {e}") from e

		# Columns of fold_proba follow the sorted classes present in y
		proba = np.zeros((len(y), len(labels)))
		for source, label in enumerate(np.unique(y)):
			proba[:, labels.index(label)] = fold_proba[:, source]

		return summarize_predictions(
			y, proba, labels,
			relation=df.attrs.get('relation', ''),
			folds=folds,
			seed=self._params.cv_seed,
			num_attributes=len(df.columns),
			decimals=int(self._config.get_config('num_decimal_places', 3)),
			options=self._params.options()
		)

	def fit(self, df: pd.DataFrame) -> Pipeline:
		"""Fit the classifier on every instance of the table."""
		features, y, _ = self.prepare(df)
		model = build_classifier(features, self._params, self._logger)
		try:
			model.fit(features, y)
		except ValueError as e:
			raise TrainingError(f"Training failed: {e}") from e

		forest = model.named_steps['forest']
		if hasattr(forest, 'oob_score_'):
			self._logger.info(f"Out-of-bag accuracy: {forest.oob_score_:.3f}")
		for name, importance in self.feature_importances(model).head(10).items():
			self._logger.debug(f"Importance {name}: {importance:.4f}")
		return model

	@staticmethod
	def feature_importances(model: Pipeline) -> pd.Series:
		"""Impurity based importances of the encoded features, largest first."""
		names = model.named_steps['encode'].get_feature_names_out()
		importances = model.named_steps['forest'].feature_importances_
		return pd.Series(importances, index=names).sort_values(ascending=False)


def save_model(model: Any, output_path: Union[str, Path]) -> Path:
	"""Serialize a fitted model with joblib."""
	output_path = Path(output_path)
	try:
		output_path.parent.mkdir(parents=True, exist_ok=True)
		joblib.dump(model, output_path)
	except OSError as e:
		raise WriteError(f"Error saving model to {output_path}: {e}") from e
	return output_path


def load_model(model_path: Union[str, Path]) -> Any:
	"""Deserialize a model written by ``save_model``."""
	model_path = Path(model_path)
	if not model_path.is_file():
		raise LoadError(f"Model not found: {model_path}")
	try:
		return joblib.load(model_path)
	except Exception as e:
		raise LoadError(f"Could not read model {model_path}: {e}") from e



#========= 4. Reporting ==========
class ModelReporter(IModelReporter):
	"""Write the evaluation of a run as a PDF report."""

	def __init__(self, config_provider: IConfigProvider):
		self._config = config_provider
		self._logger = config_provider.get_logger()

		root_dir = Path(self._config.get_config('root_dir'))
		report_dir_name = self._config.get_config('report_dir', 'Reports')
		if isinstance(report_dir_name, Path):
			self.report_dir = report_dir_name / 'ForestFactoryReports'
		else:
			self.report_dir = root_dir / report_dir_name / 'ForestFactoryReports'

		self._plot_lock = threading.Lock()

	def generate_report(self, report: EvaluationReport, model: Optional[Pipeline] = None) -> Path:
		"""Render title page, confusion matrix and, given a model, importances."""
		import matplotlib.pyplot as plt
		from matplotlib.backends.backend_pdf import PdfPages

		name = report.relation or 'dataset'
		pdf_path = self.report_dir / f"{name}_random_forest_report.pdf"
		try:
			self.report_dir.mkdir(parents=True, exist_ok=True)
			with self._plot_lock, PdfPages(pdf_path) as pdf:
				self._add_title_page(pdf, report)
				self._add_confusion_matrix(pdf, report)
				if model is not None:
					self._add_feature_importances(pdf, model)
		except OSError as e:
			raise WriteError(f"Error writing report to {pdf_path}: {e}") from e
		finally:
			plt.close('all')

		self._logger.info(f"Report written to {pdf_path}")
		return pdf_path

	def _add_title_page(self, pdf, report: EvaluationReport) -> None:
		import matplotlib.pyplot as plt

		fig = plt.figure(figsize=(8, 6))
		plt.text(0.5, 0.75, 'Random Forest Evaluation', ha='center', fontsize=24)
		plt.text(0.5, 0.62, f"Dataset: {report.relation}", ha='center', fontsize=16)
		plt.text(0.5, 0.52, f"Options: {report.options}", ha='center')
		plt.text(0.5, 0.44, f"{report.folds}-fold cross-validation, seed {report.seed}", ha='center')
		plt.text(0.5, 0.36, f"Accuracy: {_fmt(100.0 * report.accuracy, 2)} %   Kappa: {_fmt(report.kappa, report.decimals)}", ha='center')
		plt.text(0.5, 0.24, f"Generated: {report.created.strftime('%Y-%m-%d %H:%M')}", ha='center')
		plt.axis('off')
		pdf.savefig(fig)
		plt.close(fig)

	def _add_confusion_matrix(self, pdf, report: EvaluationReport) -> None:
		import matplotlib.pyplot as plt

		fig = plt.figure(figsize=(8, 6))
		ax = fig.add_subplot(111)
		image = ax.imshow(report.confusion, cmap='Blues')
		fig.colorbar(image, ax=ax)

		ticks = range(len(report.labels))
		ax.set_xticks(list(ticks))
		ax.set_yticks(list(ticks))
		ax.set_xticklabels(report.labels)
		ax.set_yticklabels(report.labels)
		ax.set_xlabel('Predicted')
		ax.set_ylabel('Actual')
		for i in ticks:
			for j in ticks:
				ax.text(j, i, str(report.confusion[i, j]), ha='center', va='center')

		ax.set_title('Confusion Matrix')
		fig.tight_layout()
		pdf.savefig(fig)
		plt.close(fig)

	def _add_feature_importances(self, pdf, model: Pipeline) -> None:
		import matplotlib.pyplot as plt

		max_columns = self._config.get_config('report_max_columns', 15)
		importances = ForestTrainer.feature_importances(model).head(max_columns)

		fig = plt.figure(figsize=(10, 6))
		ax = fig.add_subplot(111)
		ax.barh(importances.index[::-1], importances.values[::-1])
		ax.set_title('Feature Importance (final model)')
		ax.set_xlabel('Mean decrease in impurity')
		fig.tight_layout()
		pdf.savefig(fig)
		plt.close(fig)



#========= 5. Main Entrypoint ==========
def run_training(config: IConfigProvider, params: ForestParameters, input_path: Path,
				 output: Optional[str] = None, report: bool = False) -> Tuple[EvaluationReport, Optional[Path]]:
	"""Cross-validate on a dataset and, given an output, persist a full-data model."""
	input_path = Path(input_path)
	config.set_config('current_dataset', input_path.stem)
	logger = config.get_logger()

	print('Loading dataset ...')
	df = DataLoader(config).load(input_path)

	trainer = ForestTrainer(config, params)
	print(f"Random Forest options: {params.options()}")
	print('Training the model ...')
	evaluation = trainer.cross_validate(df)

	print('===== Random Forest =====')
	print(f"Classifier: {RandomForestClassifier.__module__}.{RandomForestClassifier.__name__}")
	print(f"Dataset: {evaluation.relation}")
	print(f"Number of instances: {evaluation.num_instances}")
	print(f"Number of attributes: {evaluation.num_attributes}")
	print(f"Number of classes: {len(evaluation.labels)}")
	print(f"Number of CV Folds: {evaluation.folds}")
	print(f"CV Seed: {evaluation.seed}")
	print(f"Options: {evaluation.options}")
	print()
	print(evaluation)

	model = None
	model_path = None
	if output:
		model_path = resolve_model_path(output, config.get_config('model_extension', '.model'))
		print(f"Saving the model to {model_path}")
		logger.warning('No independent test set is provided: the saved model is fitted on the full dataset, '
					   'not the one the cross-validation metrics describe')
		model = trainer.fit(df)
		save_model(model, model_path)
		logger.info(f"Model saved to {model_path}")

	if report:
		ModelReporter(config).generate_report(evaluation, model)

	return evaluation, model_path


def parse_arguments(argv: Optional[List[str]] = None):
	"""Parse command line arguments"""
	parser = ToolArgumentParser(prog='forest-train', description='Random Forest training with k-fold cross-validation')
	parser.add_argument(
		'filename',
		type=str,
		help='The preprocessed dataset (.arff or .csv)'
	)
	parser.add_argument('-K', dest='num_features', type=int, default=None,
						help='Features considered per split (0 = library default)')
	parser.add_argument('-depth', dest='max_depth', type=int, default=None,
						help='Maximum tree depth (0 = unlimited, default: 3)')
	parser.add_argument('-I', dest='num_trees', type=int, default=None,
						help='Number of trees (default: 300)')
	parser.add_argument('-S', dest='seed', type=int, default=None,
						help='Random seed of the forest (default: 1)')
	parser.add_argument('-cv_folds', dest='cv_folds', type=int, default=None,
						help='Number of cross-validation folds (default: 10)')
	parser.add_argument('-cv_seed', dest='cv_seed', type=int, default=None,
						help='Random seed of the fold assignment (default: 0)')
	parser.add_argument(
		'--output',
		type=str,
		default=None,
		help='Where to save the model (.model is appended when missing)'
	)
	parser.add_argument(
		'--report',
		action='store_true',
		help='Write a PDF evaluation report under the report directory'
	)
	add_common_arguments(parser)

	return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
	try:
		args = parse_arguments(argv)
	except ArgumentError as e:
		print(f"ERROR: {e}", file=sys.stderr)
		return 1

	prompt = f"ForestFactory Training Version: {__version__}"
	print('-' * len(prompt), f"\n{prompt}\n", '-' * len(prompt), sep='')

	initialize_runtime()
	config = Configuration(args.config, args.root, args.loglevel)
	logger = config.get_logger()

	try:
		params = ForestParameters.from_config(
			config,
			num_features=args.num_features,
			max_depth=args.max_depth,
			num_trees=args.num_trees,
			seed=args.seed,
			cv_folds=args.cv_folds,
			cv_seed=args.cv_seed
		)
		run_training(config, params, Path(args.filename), args.output, args.report)
	except ForestFactoryError as e:
		logger.error(f"Training failed: {e}")
		print(f"ERROR: {e}", file=sys.stderr)
		return 1

	return 0


if __name__ == '__main__':
	sys.exit(main())
