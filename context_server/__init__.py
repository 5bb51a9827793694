"""Key/value context store with transactional batches and live update streaming."""

__version__ = "1.0.0"
