"""stackdeploy: dependency-ordered deployment of a database-backed application stack."""

__version__ = "0.1.0"
