"""Read-only query helpers returning DTOs."""
