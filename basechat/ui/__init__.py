"""Desktop UI for BaseChat (CustomTkinter)."""
