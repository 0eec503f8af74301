"""Workspace runtime: directory client, sync engine, lifecycle and SSH config."""
