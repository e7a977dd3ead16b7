"""Inbox webhook service."""
