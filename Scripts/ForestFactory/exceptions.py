#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""Error types raised by the ForestFactory tools.

Every error aborts the run; ``main()`` of each tool reports it and exits
with a non-zero status.
"""

from typing import Iterable, Optional


class ForestFactoryError(Exception):
	"""Base class for all tool errors."""


class LoadError(ForestFactoryError):
	"""Input file is absent, unreadable or malformed."""


class WriteError(ForestFactoryError):
	"""Output file could not be written."""


class ArgumentError(ForestFactoryError):
	"""Missing positional argument or unparseable flag value."""


class TrainingError(ForestFactoryError):
	"""Dataset cannot be used to train or evaluate the classifier."""


class UnmappedValueError(ForestFactoryError):
	"""A strict nominal mapping met a value it has no entry for."""

	def __init__(self, column: str, values: Iterable[str], message: Optional[str] = None):
		self.column = column
		self.values = sorted(str(v) for v in values)
		if message is None:
			message = f"Column '{column}' contains values without a mapping: {', '.join(self.values)}"
		super().__init__(message)
