import logging
import os
import traceback
from typing import Optional


DEFAULT_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def setup_logging(level: int = logging.INFO, fmt: Optional[str] = None, log_file: Optional[str] = None) -> None:
	"""Configure root logging once. Subsequent calls only attach a file handler.
	If fmt is not provided, a sensible default is used.
	If log_file is provided, records are also appended to that file.
	"""
	root = logging.getLogger()
	format_str = fmt or DEFAULT_FORMAT
	if not root.handlers:
		logging.basicConfig(level=level, format=format_str)
	else:
		root.setLevel(level)
	if log_file:
		_attach_file_handler(root, log_file, format_str)


def _attach_file_handler(root: logging.Logger, log_file: str, format_str: str) -> None:
	"""Append records to log_file unless a handler for it is already installed."""
	log_path = os.path.abspath(log_file)
	for handler in root.handlers:
		if isinstance(handler, logging.FileHandler) and handler.baseFilename == log_path:
			return
	log_dir = os.path.dirname(log_path)
	if log_dir:
		os.makedirs(log_dir, exist_ok=True)
	file_handler = logging.FileHandler(log_path, mode='a')
	file_handler.setFormatter(logging.Formatter(format_str))
	root.addHandler(file_handler)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	"""Return a module/logger by name, after ensuring logging is configured."""
	if not logging.getLogger().handlers:
		setup_logging()
	return logging.getLogger(name) if name else logging.getLogger(__name__)


def parse_log_level(level: str) -> int:
	"""Translate a level name from config ("INFO", "debug") into a logging constant."""
	value = logging.getLevelName(str(level).upper())
	return value if isinstance(value, int) else logging.INFO


def log_exception(logger: logging.Logger, message: str = "An error occurred", exc_info: Exception = None) -> None:
	"""Centralized exception logging with full traceback.

	Args:
		logger: Logger instance to use
		message: Custom error message to log before the traceback
		exc_info: Exception instance (if None, uses current exception context)
	"""
	logger.error(message)
	if exc_info is not None:
		logger.error(f"Exception type: {type(exc_info).__name__}")
		logger.error(f"Exception message: {str(exc_info)}")
	logger.error("Full traceback:")
	logger.error(traceback.format_exc())
