"""Invocation of the external IPTV collector script."""
