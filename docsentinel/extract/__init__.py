"""Code and documentation chunk extraction."""
