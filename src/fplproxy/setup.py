import logging
import sys
import os
import yaml
from logging.handlers import RotatingFileHandler

LOGLEVEL_MAPPING = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR
}


def setup_logging(level=logging.INFO, logfile=None, max_logfile_size_kb=1024):
    """Configure root logger with consistent formatting.

    Args:
        level (int): Log level to set for the root logger.
        logfile (str): If specified, log to this file as well as the console.
        max_logfile_size_kb (int): Size at which the logfile is rotated.

    Returns:
        logging.Logger: Root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers = []

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        "%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if logfile:
        logdir = os.path.dirname(logfile)
        if logdir and not os.path.exists(logdir):
            os.makedirs(logdir)
        file_handler = RotatingFileHandler(
            logfile, maxBytes=max_logfile_size_kb * 1024, backupCount=2)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    return root_logger


def load_config(configfile: str) -> dict:
    """ Load the configuration file and check for validity.

    Args:
        configfile (str): Path to the config file

    Returns:
        dict: The loaded configuration

    Raises:
        RuntimeError: If the config file is not found or is not a mapping

    """
    if not os.path.isfile(configfile):
        raise RuntimeError(f'Configfile {configfile} not found')

    with open(configfile, 'r', encoding='UTF-8') as f:
        config_str = f.read()

    config = yaml.safe_load(config_str)

    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise RuntimeError(f'Configfile {configfile} must contain a mapping')

    for section in ('upstream', 'fetch', 'cache', 'diagnostics', 'headers'):
        if config.get(section) is None:
            config[section] = {}
        elif not isinstance(config[section], dict):
            raise RuntimeError(f'Config section {section} must be a mapping')

    return config
