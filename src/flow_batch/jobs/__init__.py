"""Job domain: models, naming, matching and the persistent job store."""
