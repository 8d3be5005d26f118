"""foamsync command-line interface."""
