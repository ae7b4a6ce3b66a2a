"""Core infrastructure: exceptions, logging, reliability, storage, tasks."""
