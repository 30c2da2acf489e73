"""External services used by the pipelines."""
