"""Utility modules for gatewire."""
