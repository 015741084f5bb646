"""HTTP transport for artifact downloads."""
