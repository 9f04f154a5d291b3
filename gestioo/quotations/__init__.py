"""Quotation document, pricing and editing."""
