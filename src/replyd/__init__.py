"""Reply listener daemon: relay chat replies into a live tmux pane."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("replyd")
except PackageNotFoundError:
    __version__ = "0.0.0"
