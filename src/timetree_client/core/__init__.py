"""Rate limiting, credentials and transport shared by every API call."""
