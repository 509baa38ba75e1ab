"""Job bodies run by the scheduler."""
