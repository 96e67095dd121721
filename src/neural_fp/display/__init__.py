"""Rich formatting of network statistics and model structure."""
