"""Git CLI wrapper."""
