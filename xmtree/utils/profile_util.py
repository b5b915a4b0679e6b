import importlib
import logging
import os

LOGGER = logging.getLogger(__name__)


class MemInfo(object):
    """Resident memory reporting for training logs.

    Reports through psutil when it is installed; otherwise every query returns an empty string.
    """

    _IS_PSUTIL_INSTALLED = None

    @classmethod
    def _check_psutil(cls):
        try:
            importlib.import_module("psutil")
            LOGGER.debug("psutil module installed, will print memory info.")
            return True
        except ModuleNotFoundError:
            LOGGER.debug("psutil module NOT installed, will NOT print memory info.")
        return False

    @classmethod
    def rss_in_mb(cls):
        """Return the resident set size of this process in MB, or None without psutil."""
        if cls._IS_PSUTIL_INSTALLED is None:
            cls._IS_PSUTIL_INSTALLED = cls._check_psutil()
        if not cls._IS_PSUTIL_INSTALLED:
            return None

        import psutil

        return psutil.Process(os.getpid()).memory_info().rss / 1024**2

    @classmethod
    def mem_info(cls):
        """Return a short memory summary suitable for appending to a log line."""
        rss = cls.rss_in_mb()
        if rss is None:
            return ""
        return f"RSS {rss:.1f} MB"
