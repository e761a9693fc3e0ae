"""Process supervision, world handling and console log processing."""
