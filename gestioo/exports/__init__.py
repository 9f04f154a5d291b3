"""PDF rendering of quotations and its supporting pieces."""
