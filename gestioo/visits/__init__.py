"""Visit records and their spreadsheet export."""
