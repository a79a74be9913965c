"""External collaborators: content provider, credentials, portraits."""
