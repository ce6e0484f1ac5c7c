"""Job bookkeeping and application services."""
