"""Inbox administration CLI."""
