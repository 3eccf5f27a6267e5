"""Domain entities. Pure business semantics, no ORM."""
