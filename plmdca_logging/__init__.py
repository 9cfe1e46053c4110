"""Diagnostic stream setup and Polars-backed metrics logging for plmDCA runs."""
