"""azpanel: a safe, cached and observable front end for the Azure CLI."""

__version__ = "0.1.0"
