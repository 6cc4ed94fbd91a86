"""External service integrations: blob storage and the account directory."""
