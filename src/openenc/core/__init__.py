"""Chart import pipeline: layer schemas, feature extraction, persistence and orchestration."""
