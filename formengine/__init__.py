"""Dynamic form schema runtime and spreadsheet auto-import engine."""
