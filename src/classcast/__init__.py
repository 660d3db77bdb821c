"""ClassCast core domain packages."""
