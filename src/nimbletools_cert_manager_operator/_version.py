"""Version information for nimbletools-cert-manager-operator."""

import importlib.metadata

try:
    __version__ = importlib.metadata.version("nimbletools-cert-manager-operator")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.1.0+dev"
