"""HTTP-клиенты."""
