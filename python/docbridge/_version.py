from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("docbridge")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "uninstalled"
