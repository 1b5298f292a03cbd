"""terrastack — stack discovery, ordering and execution for IaC repositories."""

__version__ = "0.1.0"
