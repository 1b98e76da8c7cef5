"""Common infrastructure shared across avatar_pipeline components."""
