"""Conversation threading for a multi-tenant customer-support inbox."""
