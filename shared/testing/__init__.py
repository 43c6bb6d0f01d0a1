"""Test-suite support that has to run before ``shared.config`` is imported."""
