"""Neural-network engine: layers, networks, prediction cache, diagnostics."""
