"""Pure domain layer: totals, numbering format, status machine, requests, DTOs."""
