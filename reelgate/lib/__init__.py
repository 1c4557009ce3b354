"""Adapters for external collaborators: storage, transcoder, classifier, broker, metrics."""
