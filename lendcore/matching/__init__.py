"""Fast Pass (alias dictionary) and Smart Pass (classifier) matching."""
