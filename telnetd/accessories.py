"""Accessory functions."""
# std imports
import importlib
import importlib.metadata
import logging
import traceback

__all__ = ('get_version', 'make_logger', 'repr_mapping', 'function_lookup',
           'log_exception')


def get_version():
    try:
        return importlib.metadata.version('telnetd')
    except importlib.metadata.PackageNotFoundError:
        return 'unknown'


_DEFAULT_LOGFMT = ' '.join(('%(asctime)s',
                            '%(levelname)s',
                            '%(filename)s:%(lineno)d',
                            '%(message)s'))


def make_logger(name, loglevel='info', logfile=None, logfmt=_DEFAULT_LOGFMT):
    """Create and return simple logger for given arguments."""
    lvl = getattr(logging, loglevel.upper())
    logging.getLogger().setLevel(lvl)

    _cfg = {'format': logfmt}
    if logfile:
        _cfg['filename'] = logfile
    logging.basicConfig(**_cfg)
    return logging.getLogger(name)


def repr_mapping(mapping):
    """Return printable string, 'key=value [key=value ...]' for mapping."""
    return ' '.join('='.join(map(str, kv)) for kv in mapping.items())


def function_lookup(pymod_path):
    """Return callable function target from standard module.function path."""
    module_name, func_name = pymod_path.rsplit('.', 1)
    module = importlib.import_module(module_name)
    shell_function = getattr(module, func_name)
    assert callable(shell_function), shell_function
    return shell_function


def log_exception(log, e_type, e_value, e_tb):
    """Log traceback and exception of ``sys.exc_info()``, one line per call."""
    rows_tbk = [
        line for line in '\n'.join(traceback.format_tb(e_tb)).split('\n')
        if line
    ]
    rows_exc = [
        line.rstrip()
        for line in traceback.format_exception_only(e_type, e_value)
    ]

    for line in rows_tbk + rows_exc:
        log(line)
