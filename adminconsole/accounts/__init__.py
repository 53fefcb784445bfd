"""Account routes delegated to the hosted identity service."""
