"""Settings, network and executable helpers."""
