"""``tether`` command-line interface."""
