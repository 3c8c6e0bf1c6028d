"""Interpreter and dependency provisioning."""
