"""Billing, cashier shift and surgery workflow engine for hospital operations."""
