"""Typed request parameters and their extraction from raw inputs."""
