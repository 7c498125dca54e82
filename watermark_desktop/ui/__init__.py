"""Qt widgets for the desktop shell."""
